"""Expiration policies for every ticket family the engine issues.

A policy answers one question: *how many seconds should a new ticket live?*
The answer is captured once, when the ticket is created, as an absolute
``expires_at``.

Sovereign policies bound the lifetime of a token by the remaining lifetime of
the SSO session that backs it: a token never outlives the login it was
derived from.  A result ``<= 0`` means the session is already over and the
token MUST NOT be issued.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Protocol, runtime_checkable

from oauth_issuer.token_engine.clock import Clock, default_clock
from oauth_issuer.token_engine.models import SsoSession, TicketKind

DEFAULT_CODE_TTL: Final[int] = 30
DEFAULT_ACCESS_TOKEN_TTL: Final[int] = 7200
DEFAULT_REFRESH_TOKEN_TTL: Final[int] = 2592000
DEFAULT_DEVICE_TOKEN_TTL: Final[int] = 300
DEFAULT_DEVICE_INTERVAL: Final[int] = 15
DEFAULT_USER_CODE_LENGTH: Final[int] = 8


@runtime_checkable
class ExpirationPolicy(Protocol):
    def time_to_live(self, session: SsoSession | None = None) -> int: ...


@dataclass(frozen=True, slots=True)
class HardTimeoutPolicy:
    """Fixed lifetime, independent of any session."""

    seconds: int

    def time_to_live(self, session: SsoSession | None = None) -> int:  # noqa: ARG002
        return self.seconds


@dataclass(frozen=True, slots=True)
class SovereignPolicy:
    """Wrap *nominal* so the result never exceeds the session's remaining life.

    Without a backing session the nominal lifetime applies unchanged.
    """

    nominal: ExpirationPolicy
    clock: Clock = default_clock

    def time_to_live(self, session: SsoSession | None = None) -> int:
        ttl = self.nominal.time_to_live(session)
        if session is None:
            return ttl
        remaining = session.expires_at - int(self.clock())
        return min(ttl, remaining)


@dataclass(frozen=True, slots=True)
class DevicePolicy(HardTimeoutPolicy):
    interval: int = DEFAULT_DEVICE_INTERVAL
    user_code_length: int = DEFAULT_USER_CODE_LENGTH


@dataclass(frozen=True, slots=True)
class ExpirationPolicySet:
    """Per-kind policy table consulted by the generator and code factory."""

    code: ExpirationPolicy = field(
        default_factory=lambda: HardTimeoutPolicy(DEFAULT_CODE_TTL)
    )
    access_token: ExpirationPolicy = field(
        default_factory=lambda: HardTimeoutPolicy(DEFAULT_ACCESS_TOKEN_TTL)
    )
    refresh_token: ExpirationPolicy = field(
        default_factory=lambda: HardTimeoutPolicy(DEFAULT_REFRESH_TOKEN_TTL)
    )
    device: DevicePolicy = field(
        default_factory=lambda: DevicePolicy(DEFAULT_DEVICE_TOKEN_TTL)
    )

    @classmethod
    def build(
        cls,
        *,
        code_ttl: int = DEFAULT_CODE_TTL,
        access_token_ttl: int = DEFAULT_ACCESS_TOKEN_TTL,
        refresh_token_ttl: int = DEFAULT_REFRESH_TOKEN_TTL,
        device_token_ttl: int = DEFAULT_DEVICE_TOKEN_TTL,
        device_interval: int = DEFAULT_DEVICE_INTERVAL,
        user_code_length: int = DEFAULT_USER_CODE_LENGTH,
        sovereign_access_token: bool = True,
        sovereign_refresh_token: bool = True,
        clock: Clock = default_clock,
    ) -> "ExpirationPolicySet":
        """Assemble a policy set from plain numbers (see ``EngineSettings``)."""
        access: ExpirationPolicy = HardTimeoutPolicy(access_token_ttl)
        refresh: ExpirationPolicy = HardTimeoutPolicy(refresh_token_ttl)
        if sovereign_access_token:
            access = SovereignPolicy(access, clock=clock)
        if sovereign_refresh_token:
            refresh = SovereignPolicy(refresh, clock=clock)
        return cls(
            code=HardTimeoutPolicy(code_ttl),
            access_token=access,
            refresh_token=refresh,
            device=DevicePolicy(
                device_token_ttl,
                interval=device_interval,
                user_code_length=user_code_length,
            ),
        )

    def for_kind(self, kind: TicketKind) -> ExpirationPolicy:
        if kind is TicketKind.AUTHORIZATION_CODE:
            return self.code
        if kind is TicketKind.ACCESS_TOKEN:
            return self.access_token
        if kind is TicketKind.REFRESH_TOKEN:
            return self.refresh_token
        if kind in (TicketKind.DEVICE_TOKEN, TicketKind.DEVICE_USER_CODE):
            return self.device
        raise KeyError(f"no expiration policy for {kind.value}")
