"""Structured logging helpers for token engine components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``client_id``      – The registered client the request is made for
- ``grant_type``     – Grant (or response) type being processed
- ``correlation_id`` – Request correlation id wired by the HTTP layer

Ticket ids, client secrets, passwords and PKCE verifiers are never attached;
log them through :func:`oauth_issuer.utils.logging.mask_sensitive` instead.

Usage
-----
>>> from oauth_issuer.token_engine.log_utils import get_engine_logger
>>> log = get_engine_logger(
...     base_logger_name="oauth-issuer.token_engine.generator",
...     client_id="portal",
...     grant_type="authorization_code",
... )
>>> log.info("Issued access token")
INFO oauth-issuer.token_engine.generator client_id=portal grant_type=authorization_code ...
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _EngineLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted request context into log records."""

    extra_keys = ("client_id", "grant_type", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if extra and k in extra and extra[k] is not None:
                extra_clean[k] = str(extra[k])
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_engine_logger(
    *,
    base_logger_name: str = "oauth-issuer.token_engine",
    client_id: str | None = None,
    grant_type: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with request context."""
    logger = logging.getLogger(base_logger_name)
    return _EngineLoggerAdapter(
        logger,
        {
            "client_id": client_id,
            "grant_type": grant_type,
            "correlation_id": correlation_id,
        },
    )
