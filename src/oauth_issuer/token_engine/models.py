"""Typed, immutable records used by the token engine.

Tickets are frozen dataclasses: state transitions (device approval, polling
timestamps) produce a new instance via :func:`dataclasses.replace` which is
then written back through the ticket store.  Expiration is stored as an
absolute epoch-second ``expires_at`` computed once, at creation, from the
expiration policy in force.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Mapping

from oauth_issuer.token_engine.clock import Clock, default_clock


# --------------------------------------------------------------------------- #
# Enumerations                                                                #
# --------------------------------------------------------------------------- #
class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"
    PASSWORD = "password"
    CLIENT_CREDENTIALS = "client_credentials"
    DEVICE_CODE = "urn:ietf:params:oauth:grant-type:device_code"


class ResponseType(str, Enum):
    CODE = "code"
    TOKEN = "token"
    ID_TOKEN_TOKEN = "id_token token"
    DEVICE_CODE = "device_code"


class TicketKind(str, Enum):
    """Ticket families; the value doubles as the id prefix."""

    SSO_SESSION = "TGT"
    AUTHORIZATION_CODE = "OC"
    ACCESS_TOKEN = "AT"
    REFRESH_TOKEN = "RT"
    DEVICE_TOKEN = "ODT"
    DEVICE_USER_CODE = "UC"

    @property
    def prefix(self) -> str:
        return f"{self.value}-"


# --------------------------------------------------------------------------- #
# Principals & clients                                                        #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class Principal:
    id: str
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Authentication:
    """Outcome of authenticating an end user (or a client acting for itself)."""

    principal: Principal
    authenticated_at: int
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Authentication":
        principal = data["principal"]
        return cls(
            principal=Principal(
                id=principal["id"], attributes=dict(principal.get("attributes") or {})
            ),
            authenticated_at=int(data["authenticated_at"]),
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass(frozen=True, slots=True)
class Service:
    """Relying-party target a token is issued for (redirect URI or client id)."""

    id: str


@dataclass(frozen=True, slots=True)
class RegisteredClient:
    """Static registration data for one OAuth client.

    ``client_secret`` holds a bcrypt hash; ``None`` marks a public client.
    An empty ``allowed_grant_types`` allows nothing, an empty
    ``allowed_scopes`` allows any scope.
    """

    client_id: str
    client_secret: str | None = None
    name: str = ""
    service_id_pattern: str = ".*"
    allowed_grant_types: frozenset[GrantType] = frozenset()
    allowed_response_types: frozenset[ResponseType] = frozenset({ResponseType.CODE})
    allowed_scopes: frozenset[str] = frozenset()
    jwt_access_token: bool = False
    generate_refresh_token: bool = False
    renew_refresh_token: bool = False

    @property
    def is_public(self) -> bool:
        return self.client_secret is None

    def supports_grant(self, grant_type: GrantType) -> bool:
        return grant_type in self.allowed_grant_types

    def supports_response_type(self, response_type: ResponseType) -> bool:
        return response_type in self.allowed_response_types

    def matches_service(self, service_id: str) -> bool:
        return re.fullmatch(self.service_id_pattern, service_id) is not None


# --------------------------------------------------------------------------- #
# Tickets                                                                     #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True, kw_only=True)
class Ticket:
    kind: ClassVar[TicketKind]

    id: str
    created_at: int
    expires_at: int

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* once *clock()* reached ``expires_at``."""
        return clock() >= self.expires_at

    def time_to_live(self, *, clock: Clock = default_clock) -> int:
        """Seconds left before expiry, never negative."""
        return max(0, self.expires_at - int(clock()))


@dataclass(frozen=True, slots=True, kw_only=True)
class SsoSession(Ticket):
    """Ticket-granting ticket produced by the login broker."""

    kind: ClassVar[TicketKind] = TicketKind.SSO_SESSION

    authentication: Authentication


@dataclass(frozen=True, slots=True, kw_only=True)
class _GrantTicket(Ticket):
    client_id: str
    service: str
    authentication: Authentication
    scopes: tuple[str, ...] = ()
    session_id: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class AuthorizationCode(_GrantTicket):
    kind: ClassVar[TicketKind] = TicketKind.AUTHORIZATION_CODE

    code_challenge: str | None = None
    code_challenge_method: str | None = None
    nonce: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class AccessToken(_GrantTicket):
    kind: ClassVar[TicketKind] = TicketKind.ACCESS_TOKEN

    grant_type: str | None = None
    refresh_token_id: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class RefreshToken(_GrantTicket):
    kind: ClassVar[TicketKind] = TicketKind.REFRESH_TOKEN


@dataclass(frozen=True, slots=True, kw_only=True)
class DeviceToken(Ticket):
    """Device code handed to the polling device (RFC 8628)."""

    kind: ClassVar[TicketKind] = TicketKind.DEVICE_TOKEN

    client_id: str
    service: str
    user_code: str
    interval: int
    scopes: tuple[str, ...] = ()
    approved: bool = False
    authentication: Authentication | None = None
    last_polled_at: int | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class DeviceUserCode(Ticket):
    """Index entry from the short user code to its device token.

    Approval is recorded here as well as on the device token: polling only
    ever rewrites the device token, so a poll racing the approval cannot
    erase it.
    """

    kind: ClassVar[TicketKind] = TicketKind.DEVICE_USER_CODE

    device_code: str
    authentication: Authentication | None = None


_TICKET_TYPES: dict[TicketKind, type[Ticket]] = {
    cls.kind: cls
    for cls in (
        SsoSession,
        AuthorizationCode,
        AccessToken,
        RefreshToken,
        DeviceToken,
        DeviceUserCode,
    )
}


def ticket_to_dict(ticket: Ticket) -> dict[str, Any]:
    """Return a JSON-serialisable dict (``kind`` included) for *ticket*."""
    data = asdict(ticket)
    data["kind"] = ticket.kind.value
    if "scopes" in data:
        data["scopes"] = list(data["scopes"])
    return data


def ticket_from_dict(data: Mapping[str, Any]) -> Ticket:
    """Inverse of :func:`ticket_to_dict`."""
    payload = dict(data)
    cls = _TICKET_TYPES[TicketKind(payload.pop("kind"))]
    if payload.get("authentication") is not None:
        payload["authentication"] = Authentication.from_dict(payload["authentication"])
    if "scopes" in payload:
        payload["scopes"] = tuple(payload["scopes"])
    return cls(**payload)


# --------------------------------------------------------------------------- #
# Pipeline records                                                            #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class TokenRequest:
    """Raw, HTTP-agnostic endpoint input handed to the extractors."""

    params: Mapping[str, str]
    basic_auth: tuple[str, str] | None = None
    sso_session_id: str | None = None

    def param(self, name: str) -> str | None:
        """Return the stripped parameter value, ``None`` when absent or blank."""
        value = self.params.get(name)
        if value is None:
            return None
        return value.strip() or None


@dataclass(slots=True)
class GrantRequest:
    """Normalized token request produced by a grant extractor.

    Validators attach the ticket they redeemed (``source_ticket``) and, for
    grants that authenticate during validation, the resulting
    ``authentication``.
    """

    grant_type: GrantType | None
    response_type: ResponseType | None
    client_id: str
    registered_client: RegisteredClient
    service: Service | None
    client_secret: str | None = None
    authentication: Authentication | None = None
    scopes: tuple[str, ...] = ()
    ticket_granting_ticket: SsoSession | None = None
    code: str | None = None
    code_verifier: str | None = None
    refresh_token: str | None = None
    device_code: str | None = None
    username: str | None = None
    password: str | None = None
    redirect_uri: str | None = None
    state: str | None = None
    nonce: str | None = None
    generate_refresh_token: bool = False
    source_ticket: Ticket | None = None

    @property
    def is_device_authorization(self) -> bool:
        """Initial device request (no device code yet)."""
        return self.response_type is ResponseType.DEVICE_CODE and not self.device_code


@dataclass(frozen=True, slots=True)
class GeneratedToken:
    access_token: AccessToken | None = None
    refresh_token: RefreshToken | None = None
    device_token: DeviceToken | None = None
    user_code: DeviceUserCode | None = None
