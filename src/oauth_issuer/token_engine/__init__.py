"""Token issuance core package.

This namespace hosts the reusable, **HTTP-agnostic** pipeline that turns a
token-endpoint request into issued credentials.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
pkce
    Proof-Key for Code Exchange verification.
models
    Immutable dataclasses for clients, principals and tickets.
expiration
    Per-ticket-kind expiration policies (hard and SSO-bounded).
store / redis_store
    Ticket store contract and its memory, disk and Redis backends.
registry
    Read-only client registry.
extractors / validators / generator / encoder
    The four pipeline stages.
service
    ``TokenEngine`` façade wiring the stages together.
errors
    OAuth error taxonomy.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

Only leaf modules are re-exported here so that importing a sub-module never
drags in the whole pipeline.
"""

from __future__ import annotations

from .clock import Clock, default_clock  # noqa: F401
from .errors import (  # noqa: F401
    AuthorizationPendingError,
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    OAuthError,
    ServerError,
    SlowDownError,
    TicketStoreError,
    UnauthorizedClientError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from .log_utils import get_engine_logger  # noqa: F401
from .models import (  # noqa: F401
    AccessToken,
    Authentication,
    AuthorizationCode,
    DeviceToken,
    DeviceUserCode,
    GrantRequest,
    GrantType,
    Principal,
    RefreshToken,
    RegisteredClient,
    ResponseType,
    Service,
    SsoSession,
    TicketKind,
    TokenRequest,
)
from .pkce import code_challenge_s256, generate_code_verifier, verify_code_challenge  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "default_clock",
    # errors
    "OAuthError",
    "InvalidRequestError",
    "InvalidClientError",
    "InvalidGrantError",
    "UnauthorizedClientError",
    "UnsupportedGrantTypeError",
    "UnsupportedResponseTypeError",
    "InvalidScopeError",
    "AuthorizationPendingError",
    "SlowDownError",
    "ServerError",
    "TicketStoreError",
    # logging helpers
    "get_engine_logger",
    # models
    "GrantType",
    "ResponseType",
    "TicketKind",
    "Principal",
    "Authentication",
    "Service",
    "RegisteredClient",
    "SsoSession",
    "AuthorizationCode",
    "AccessToken",
    "RefreshToken",
    "DeviceToken",
    "DeviceUserCode",
    "TokenRequest",
    "GrantRequest",
    # pkce
    "generate_code_verifier",
    "code_challenge_s256",
    "verify_code_challenge",
]
