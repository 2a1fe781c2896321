"""Token generator: turns a validated :class:`GrantRequest` into tickets.

All tickets are persisted through the :class:`TicketStore` before they are
returned, so the response encoder only ever renders credentials that the
registry can resolve.
"""

from __future__ import annotations

from oauth_issuer.token_engine.clock import Clock, default_clock, epoch_seconds
from oauth_issuer.token_engine.errors import InvalidGrantError, TicketStoreError
from oauth_issuer.token_engine.expiration import ExpirationPolicySet
from oauth_issuer.token_engine.ids import new_ticket_id, new_user_code, user_code_ticket_id
from oauth_issuer.token_engine.log_utils import get_engine_logger
from oauth_issuer.token_engine.models import (
    AccessToken,
    DeviceToken,
    DeviceUserCode,
    GeneratedToken,
    GrantRequest,
    RefreshToken,
    TicketKind,
)
from oauth_issuer.token_engine.store import TicketStore
from oauth_issuer.utils.logging import mask_sensitive

_LOGGER_NAME = "oauth-issuer.token_engine.generator"
_USER_CODE_ATTEMPTS = 5


class TokenGenerator:
    """Create access, refresh and device tickets according to policy."""

    def __init__(
        self,
        store: TicketStore,
        policies: ExpirationPolicySet | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.store = store
        self.policies = policies or ExpirationPolicySet()
        self.clock = clock

    def generate(self, grant: GrantRequest) -> GeneratedToken:
        if grant.is_device_authorization:
            return self._device_tokens(grant)
        return self._access_tokens(grant)

    # ------------------------------------------------------------------ #
    # access / refresh                                                   #
    # ------------------------------------------------------------------ #
    def _access_tokens(self, grant: GrantRequest) -> GeneratedToken:
        if grant.authentication is None or grant.service is None:
            raise InvalidGrantError("grant carries no authenticated principal")

        session = grant.ticket_granting_ticket
        ttl = self.policies.access_token.time_to_live(session)
        if ttl <= 0:
            raise InvalidGrantError("the SSO session backing this grant has ended")

        now = epoch_seconds(self.clock)
        new_refresh, refresh_id = self._refresh_token(grant, now)

        access = AccessToken(
            id=new_ticket_id(TicketKind.ACCESS_TOKEN),
            created_at=now,
            expires_at=now + ttl,
            client_id=grant.client_id,
            service=grant.service.id,
            authentication=grant.authentication,
            scopes=grant.scopes,
            session_id=session.id if session else None,
            grant_type=grant.grant_type.value if grant.grant_type else None,
            refresh_token_id=refresh_id,
        )
        self.store.add(access)

        self._log(grant).info(
            "Issued access token %s (expires in %ss, refresh=%s)",
            mask_sensitive(access.id, 6),
            ttl,
            "new" if new_refresh else ("kept" if refresh_id else "none"),
        )
        return GeneratedToken(access_token=access, refresh_token=new_refresh)

    def _refresh_token(self, grant: GrantRequest, now: int) -> tuple[RefreshToken | None, str | None]:
        """Return ``(newly created refresh token, id referenced by the access token)``."""
        client = grant.registered_client
        source = grant.source_ticket

        if isinstance(source, RefreshToken):
            rotate = (
                grant.generate_refresh_token
                and client.generate_refresh_token
                and client.renew_refresh_token
            )
            if not rotate:
                return None, source.id
            # Rotation: losing the race to consume means another request already rotated.
            if self.store.consume(source.id, TicketKind.REFRESH_TOKEN) is None:
                raise InvalidGrantError("refresh token was already used")
            created = self._create_refresh_token(grant, now)
            return created, created.id

        if grant.generate_refresh_token and client.generate_refresh_token:
            created = self._create_refresh_token(grant, now)
            return created, created.id
        return None, None

    def _create_refresh_token(self, grant: GrantRequest, now: int) -> RefreshToken:
        session = grant.ticket_granting_ticket
        ttl = self.policies.refresh_token.time_to_live(session)
        if ttl <= 0:
            raise InvalidGrantError("the SSO session backing this grant has ended")
        refresh = RefreshToken(
            id=new_ticket_id(TicketKind.REFRESH_TOKEN),
            created_at=now,
            expires_at=now + ttl,
            client_id=grant.client_id,
            service=grant.service.id,
            authentication=grant.authentication,
            scopes=grant.scopes,
            session_id=session.id if session else None,
        )
        self.store.add(refresh)
        return refresh

    # ------------------------------------------------------------------ #
    # device authorization                                               #
    # ------------------------------------------------------------------ #
    def _device_tokens(self, grant: GrantRequest) -> GeneratedToken:
        policy = self.policies.device
        now = epoch_seconds(self.clock)
        ttl = policy.time_to_live()
        service_id = grant.service.id if grant.service else grant.client_id

        for _ in range(_USER_CODE_ATTEMPTS):
            user_code = new_user_code(policy.user_code_length)
            if not self.store.exists(user_code_ticket_id(user_code)):
                break
        else:
            raise TicketStoreError("could not allocate a unique user code")

        device = DeviceToken(
            id=new_ticket_id(TicketKind.DEVICE_TOKEN),
            created_at=now,
            expires_at=now + ttl,
            client_id=grant.client_id,
            service=service_id,
            user_code=user_code,
            interval=policy.interval,
            scopes=grant.scopes,
        )
        index = DeviceUserCode(
            id=user_code_ticket_id(user_code),
            created_at=now,
            expires_at=now + ttl,
            device_code=device.id,
        )
        self.store.add(device)
        self.store.add(index)

        self._log(grant).info(
            "Issued device code %s (expires in %ss)", mask_sensitive(device.id, 6), ttl
        )
        return GeneratedToken(device_token=device, user_code=index)

    def _log(self, grant: GrantRequest):
        name = grant.grant_type.value if grant.grant_type else (
            grant.response_type.value if grant.response_type else None
        )
        return get_engine_logger(
            base_logger_name=_LOGGER_NAME, client_id=grant.client_id, grant_type=name
        )
