"""Exception types raised by the token engine.

Only lightweight, **data-carrying** exceptions live here so that the HTTP layer
can transform them into OAuth 2.0 error responses (RFC 6749 §5.2,
RFC 8628 §3.5) without knowing which pipeline stage failed.

Every :class:`OAuthError` carries

- ``error``        – the registered OAuth error code
- ``status_code``  – HTTP status the endpoint should answer with
- ``retryable``    – *True* only for device polling states the client is
  expected to retry (``authorization_pending`` / ``slow_down``)

:class:`TicketStoreError` is deliberately **not** an :class:`OAuthError`: it
signals an infrastructure failure and is surfaced as ``server_error``.
"""

from __future__ import annotations

from typing import ClassVar


class OAuthError(Exception):
    """Base class for protocol-level rejections."""

    error: ClassVar[str] = "invalid_request"
    status_code: ClassVar[int] = 400
    retryable: ClassVar[bool] = False

    def __init__(self, description: str | None = None) -> None:
        super().__init__(description or self.error.replace("_", " "))
        self.description: str | None = description

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload **without secrets**."""
        payload = {"error": self.error}
        if self.description:
            payload["error_description"] = self.description
        return payload


class InvalidRequestError(OAuthError):
    """Malformed request or missing/duplicated parameter."""

    error = "invalid_request"


class InvalidClientError(OAuthError):
    """Client authentication failed (unknown client, bad secret)."""

    error = "invalid_client"
    status_code = 401


class InvalidGrantError(OAuthError):
    """Code / refresh token / credentials invalid, expired or mismatched."""

    error = "invalid_grant"


class UnauthorizedClientError(OAuthError):
    """The client is not allowed to use the requested grant type."""

    error = "unauthorized_client"


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"


class UnsupportedResponseTypeError(OAuthError):
    error = "unsupported_response_type"


class InvalidScopeError(OAuthError):
    error = "invalid_scope"


class InvalidTokenError(OAuthError):
    """Bearer access token unknown, expired or revoked (RFC 6750 §3.1)."""

    error = "invalid_token"
    status_code = 401


class AuthorizationPendingError(OAuthError):
    """Device token exists but the user has not approved it yet."""

    error = "authorization_pending"
    retryable = True


class SlowDownError(OAuthError):
    """Device token polled faster than the advertised interval."""

    error = "slow_down"
    retryable = True


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500


class TicketStoreError(RuntimeError):
    """Raised by ticket store backends when persistence fails."""


class AuthenticationFailure(RuntimeError):
    """Raised by resource-owner authenticators on bad credentials."""


class AuthenticationBackendError(RuntimeError):
    """The resource-owner authentication backend is unreachable or misbehaving.

    Like :class:`TicketStoreError` this is an infrastructure failure, surfaced
    as ``server_error`` rather than ``invalid_grant``.
    """
