"""Logging helpers shared by the engine and the HTTP layer."""

from __future__ import annotations

import logging
import os


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Return *value* with everything but the first ``keep_chars`` masked.

    ``None`` and empty strings render as ``"None"`` so log lines stay aligned.
    """
    if not value:
        return "None"
    if len(value) <= keep_chars * 2:
        return "*" * len(value)
    return f"{value[:keep_chars]}{'*' * (len(value) - keep_chars)}"


def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure the root handler for the ``oauth-issuer`` logger tree.

    The level defaults to ``OAUTH_ISSUER_LOG_LEVEL`` (``INFO`` when unset).
    Unknown level names fall back to ``INFO`` instead of failing start-up.
    """
    level_name = (level or os.getenv("OAUTH_ISSUER_LOG_LEVEL") or "INFO").upper()
    numeric = logging.getLevelName(level_name)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    logging.basicConfig(
        level=numeric,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )
    logger = logging.getLogger("oauth-issuer")
    logger.setLevel(numeric)
    return logger
