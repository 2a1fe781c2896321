"""Request validators: decide whether a :class:`GrantRequest` may be honoured.

Every validator runs the same prelude before its grant-specific checks:

1. client authentication   → ``invalid_client``
2. grant gating            → ``unauthorized_client``
3. requested scope check   → ``invalid_scope``

Resource-owner credentials are only looked at in step 4, so a client that is
unknown, unauthenticated or not allowed to use the grant never reaches the
user's password check.

Validators that redeem single-use tickets (authorization codes, device codes)
do so with :meth:`TicketStore.consume`; the store guarantees that exactly one
concurrent redemption succeeds.  On success a validator attaches the redeemed
ticket (``source_ticket``), the ``authentication`` and the backing SSO
session to the grant request for the token generator.
"""

from __future__ import annotations

import dataclasses
from typing import ClassVar, Iterable

from oauth_issuer.token_engine.authn import Authenticator
from oauth_issuer.token_engine.clock import Clock, default_clock, epoch_seconds
from oauth_issuer.token_engine.errors import (
    AuthenticationFailure,
    AuthorizationPendingError,
    InvalidClientError,
    InvalidGrantError,
    InvalidScopeError,
    SlowDownError,
    UnauthorizedClientError,
    UnsupportedGrantTypeError,
)
from oauth_issuer.token_engine.ids import user_code_ticket_id
from oauth_issuer.token_engine.log_utils import get_engine_logger
from oauth_issuer.token_engine.models import (
    AuthorizationCode,
    Authentication,
    DeviceToken,
    DeviceUserCode,
    GrantRequest,
    GrantType,
    Principal,
    RefreshToken,
    ResponseType,
    SsoSession,
    TicketKind,
)
from oauth_issuer.token_engine.pkce import verify_code_challenge
from oauth_issuer.token_engine.registry import verify_client_secret
from oauth_issuer.token_engine.store import TicketStore
from oauth_issuer.utils.logging import mask_sensitive

_LOGGER_NAME = "oauth-issuer.token_engine.validators"


class Validator:
    """Base validator; subclasses implement :meth:`validate_grant`."""

    grant_type: ClassVar[GrantType | None] = None
    allows_public_clients: ClassVar[bool] = False

    def __init__(self, store: TicketStore, *, clock: Clock = default_clock) -> None:
        self.store = store
        self.clock = clock

    def supports(self, grant: GrantRequest) -> bool:
        return self.grant_type is not None and grant.grant_type is self.grant_type

    def validate(self, grant: GrantRequest) -> None:
        self.authenticate_client(grant)
        self.check_grant_allowed(grant)
        self.check_scopes(grant)
        self.validate_grant(grant)

    def validate_grant(self, grant: GrantRequest) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------ #
    # prelude                                                            #
    # ------------------------------------------------------------------ #
    def authenticate_client(self, grant: GrantRequest) -> None:
        client = grant.registered_client
        if client.is_public:
            if not self.allows_public_clients:
                raise InvalidClientError("client authentication required for this grant")
            if grant.client_secret:
                raise InvalidClientError("public clients cannot present a secret")
            return
        if not verify_client_secret(client, grant.client_secret):
            self._log(grant).info("Client authentication failed")
            raise InvalidClientError("client authentication failed")

    def check_grant_allowed(self, grant: GrantRequest) -> None:
        if grant.grant_type is None or not grant.registered_client.supports_grant(grant.grant_type):
            self._log(grant).info("Grant type not allowed for client")
            raise UnauthorizedClientError("client is not allowed to use this grant type")

    def check_scopes(self, grant: GrantRequest) -> None:
        allowed = grant.registered_client.allowed_scopes
        if allowed and not set(grant.scopes) <= allowed:
            raise InvalidScopeError("requested scope exceeds the client's allowed scopes")

    # ------------------------------------------------------------------ #
    # helpers                                                            #
    # ------------------------------------------------------------------ #
    def _log(self, grant: GrantRequest):
        grant_name = grant.grant_type.value if grant.grant_type else (
            grant.response_type.value if grant.response_type else None
        )
        return get_engine_logger(
            base_logger_name=_LOGGER_NAME, client_id=grant.client_id, grant_type=grant_name
        )

    def _backing_session(self, session_id: str | None) -> SsoSession | None:
        """Return the live SSO session a ticket was derived from.

        A ticket bound to a session that no longer exists must not yield new
        tokens.
        """
        if session_id is None:
            return None
        session = self.store.get(session_id, TicketKind.SSO_SESSION)
        if not isinstance(session, SsoSession) or session.is_expired(clock=self.clock):
            raise InvalidGrantError("the SSO session backing this grant has ended")
        return session


# --------------------------------------------------------------------------- #
# authorization_code                                                          #
# --------------------------------------------------------------------------- #
class AuthorizationCodeValidator(Validator):
    grant_type = GrantType.AUTHORIZATION_CODE

    def supports(self, grant: GrantRequest) -> bool:
        return super().supports(grant) and grant.code_verifier is None

    def validate_grant(self, grant: GrantRequest) -> None:
        # Consume first: a code presented once is burnt whatever happens next.
        ticket = self.store.consume(grant.code or "", TicketKind.AUTHORIZATION_CODE)
        if not isinstance(ticket, AuthorizationCode) or ticket.is_expired(clock=self.clock):
            self._log(grant).info(
                "Rejected authorization code %s", mask_sensitive(grant.code, 6)
            )
            raise InvalidGrantError("authorization code is invalid, expired or already used")
        if ticket.client_id != grant.client_id:
            raise InvalidGrantError("authorization code was issued to another client")
        if grant.service is None or ticket.service != grant.service.id:
            raise InvalidGrantError("redirect_uri does not match the authorization request")
        self.check_code_verifier(grant, ticket)

        grant.source_ticket = ticket
        grant.authentication = ticket.authentication
        grant.scopes = ticket.scopes
        grant.nonce = grant.nonce or ticket.nonce
        grant.ticket_granting_ticket = self._backing_session(ticket.session_id)

    def check_code_verifier(self, grant: GrantRequest, ticket: AuthorizationCode) -> None:
        if ticket.code_challenge is not None:
            raise InvalidGrantError("code_verifier is required for this authorization code")


class PkceAuthorizationCodeValidator(AuthorizationCodeValidator):
    allows_public_clients = True

    def supports(self, grant: GrantRequest) -> bool:
        return grant.grant_type is self.grant_type and grant.code_verifier is not None

    def check_code_verifier(self, grant: GrantRequest, ticket: AuthorizationCode) -> None:
        if ticket.code_challenge is None:
            raise InvalidGrantError("authorization code was not issued with a code challenge")
        if not verify_code_challenge(
            grant.code_verifier or "", ticket.code_challenge, ticket.code_challenge_method
        ):
            self._log(grant).info("PKCE verification failed")
            raise InvalidGrantError("code_verifier does not match the code challenge")


# --------------------------------------------------------------------------- #
# refresh_token                                                               #
# --------------------------------------------------------------------------- #
class RefreshTokenValidator(Validator):
    grant_type = GrantType.REFRESH_TOKEN
    # Public clients may refresh tokens they own; ownership is checked below.
    allows_public_clients = True

    def validate_grant(self, grant: GrantRequest) -> None:
        ticket = self.store.get(grant.refresh_token or "", TicketKind.REFRESH_TOKEN)
        if not isinstance(ticket, RefreshToken) or ticket.is_expired(clock=self.clock):
            raise InvalidGrantError("refresh token is invalid or expired")
        if ticket.client_id != grant.client_id:
            raise InvalidGrantError("refresh token was issued to another client")
        if grant.scopes and not set(grant.scopes) <= set(ticket.scopes):
            raise InvalidScopeError("requested scope exceeds the originally granted scope")

        grant.source_ticket = ticket
        grant.authentication = ticket.authentication
        grant.scopes = grant.scopes or ticket.scopes
        grant.ticket_granting_ticket = self._backing_session(ticket.session_id)


# --------------------------------------------------------------------------- #
# password                                                                    #
# --------------------------------------------------------------------------- #
class PasswordValidator(Validator):
    """Resource-owner password grant.

    Registered even when no :class:`Authenticator` is configured, so the
    prelude still reports unknown or gated clients; the missing backend is
    only reported once the client has passed it.
    """

    grant_type = GrantType.PASSWORD

    def __init__(
        self,
        store: TicketStore,
        authenticator: Authenticator | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        super().__init__(store, clock=clock)
        self.authenticator = authenticator

    def validate_grant(self, grant: GrantRequest) -> None:
        if self.authenticator is None:
            raise UnsupportedGrantTypeError("no resource-owner authenticator is configured")
        try:
            grant.authentication = self.authenticator.authenticate(
                grant.username or "", grant.password or ""
            )
        except AuthenticationFailure:
            self._log(grant).info("Resource owner authentication failed for user=%s", grant.username)
            raise InvalidGrantError("invalid resource owner credentials") from None


# --------------------------------------------------------------------------- #
# client_credentials                                                          #
# --------------------------------------------------------------------------- #
class ClientCredentialsValidator(Validator):
    grant_type = GrantType.CLIENT_CREDENTIALS

    def validate_grant(self, grant: GrantRequest) -> None:
        # The client acts on its own behalf: it is the principal.
        grant.authentication = Authentication(
            principal=Principal(id=grant.client_id),
            authenticated_at=epoch_seconds(self.clock),
            attributes={"grant_type": self.grant_type.value},
        )


# --------------------------------------------------------------------------- #
# device_code                                                                 #
# --------------------------------------------------------------------------- #
class DeviceCodeValidator(Validator):
    grant_type = GrantType.DEVICE_CODE
    allows_public_clients = True

    def validate_grant(self, grant: GrantRequest) -> None:
        if grant.is_device_authorization:
            return

        device_code = grant.device_code or ""
        ticket = self.store.get(device_code, TicketKind.DEVICE_TOKEN)
        if not isinstance(ticket, DeviceToken) or ticket.is_expired(clock=self.clock):
            raise InvalidGrantError("device code is invalid or expired")
        if ticket.client_id != grant.client_id:
            raise InvalidGrantError("device code was issued to another client")

        now = epoch_seconds(self.clock)
        approval = self._approval(ticket)
        if approval is None:
            polled_too_fast = (
                ticket.last_polled_at is not None
                and now - ticket.last_polled_at < ticket.interval
            )
            self.store.update(dataclasses.replace(ticket, last_polled_at=now))
            if polled_too_fast:
                raise SlowDownError(f"poll at most every {ticket.interval} seconds")
            raise AuthorizationPendingError("the user has not approved this device yet")

        consumed = self.store.consume(device_code, TicketKind.DEVICE_TOKEN)
        if consumed is None:
            raise InvalidGrantError("device code was already redeemed")
        self.store.delete(user_code_ticket_id(ticket.user_code))

        grant.source_ticket = consumed
        grant.authentication = approval
        grant.scopes = ticket.scopes

    def _approval(self, ticket: DeviceToken) -> Authentication | None:
        if ticket.approved and ticket.authentication is not None:
            return ticket.authentication
        index = self.store.get(user_code_ticket_id(ticket.user_code), TicketKind.DEVICE_USER_CODE)
        if isinstance(index, DeviceUserCode) and index.device_code == ticket.id:
            return index.authentication
        return None


# --------------------------------------------------------------------------- #
# implicit (response_type=token)                                              #
# --------------------------------------------------------------------------- #
class ImplicitTokenValidator(Validator):
    """Browser-based issuance straight from an authenticated SSO session."""

    allows_public_clients = True

    def supports(self, grant: GrantRequest) -> bool:
        return grant.grant_type is None and grant.response_type in (
            ResponseType.TOKEN,
            ResponseType.ID_TOKEN_TOKEN,
        )

    def authenticate_client(self, grant: GrantRequest) -> None:
        # Front-channel flow: the user agent carries no client credentials.
        return None

    def check_grant_allowed(self, grant: GrantRequest) -> None:
        if grant.response_type is None or not grant.registered_client.supports_response_type(
            grant.response_type
        ):
            raise UnauthorizedClientError("client is not allowed to use this response type")

    def validate_grant(self, grant: GrantRequest) -> None:
        session = grant.ticket_granting_ticket
        if session is None or session.is_expired(clock=self.clock):
            raise InvalidGrantError("an authenticated SSO session is required")
        grant.authentication = session.authentication


# --------------------------------------------------------------------------- #
# Chain                                                                       #
# --------------------------------------------------------------------------- #
class ValidatorChain:
    """Run every validator that supports the grant; the first rejection wins."""

    def __init__(self, validators: Iterable[Validator]) -> None:
        self.validators: list[Validator] = list(validators)

    @classmethod
    def default(
        cls,
        store: TicketStore,
        *,
        authenticator: Authenticator | None = None,
        clock: Clock = default_clock,
    ) -> "ValidatorChain":
        return cls(
            [
                PkceAuthorizationCodeValidator(store, clock=clock),
                AuthorizationCodeValidator(store, clock=clock),
                DeviceCodeValidator(store, clock=clock),
                RefreshTokenValidator(store, clock=clock),
                PasswordValidator(store, authenticator, clock=clock),
                ClientCredentialsValidator(store, clock=clock),
                ImplicitTokenValidator(store, clock=clock),
            ]
        )

    def validate(self, grant: GrantRequest) -> None:
        supporting = [v for v in self.validators if v.supports(grant)]
        if not supporting:
            name = grant.grant_type.value if grant.grant_type else "none"
            raise UnsupportedGrantTypeError(f"no validator accepts grant_type {name!r}")
        for validator in supporting:
            validator.validate(grant)
