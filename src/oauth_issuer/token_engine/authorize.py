"""Authorization code issuance for the ``/authorize`` endpoint.

Codes are minted only for an authenticated SSO session and carry the PKCE
challenge (if any) so the token endpoint can verify the ``code_verifier``.
"""

from __future__ import annotations

import logging
from typing import Iterable

from oauth_issuer.token_engine.clock import Clock, default_clock, epoch_seconds
from oauth_issuer.token_engine.errors import (
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    UnauthorizedClientError,
)
from oauth_issuer.token_engine.expiration import ExpirationPolicySet
from oauth_issuer.token_engine.ids import new_ticket_id
from oauth_issuer.token_engine.models import (
    AuthorizationCode,
    GrantType,
    ResponseType,
    SsoSession,
    TicketKind,
)
from oauth_issuer.token_engine.pkce import SUPPORTED_METHODS
from oauth_issuer.token_engine.registry import ClientRegistry
from oauth_issuer.token_engine.store import TicketStore
from oauth_issuer.utils.logging import mask_sensitive

_LOG = logging.getLogger("oauth-issuer.token_engine.authorize")


class AuthorizationCodeFactory:
    def __init__(
        self,
        store: TicketStore,
        registry: ClientRegistry,
        policies: ExpirationPolicySet | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.store = store
        self.registry = registry
        self.policies = policies or ExpirationPolicySet()
        self.clock = clock

    def issue(
        self,
        *,
        client_id: str,
        redirect_uri: str,
        session: SsoSession | None,
        scopes: Iterable[str] = (),
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        nonce: str | None = None,
    ) -> AuthorizationCode:
        """Validate the authorization request and persist a single-use code."""
        client = self.registry.get(client_id)
        if client is None:
            raise InvalidClientError("unknown client")
        if not (
            client.supports_response_type(ResponseType.CODE)
            and client.supports_grant(GrantType.AUTHORIZATION_CODE)
        ):
            raise UnauthorizedClientError("client is not allowed to request authorization codes")
        if not client.matches_service(redirect_uri):
            raise InvalidRequestError("redirect_uri is not registered for this client")

        requested = tuple(dict.fromkeys(scopes))
        if client.allowed_scopes and not set(requested) <= client.allowed_scopes:
            raise InvalidScopeError("requested scope exceeds the client's allowed scopes")

        if code_challenge is None:
            if code_challenge_method is not None:
                raise InvalidRequestError("code_challenge_method without code_challenge")
            if client.is_public:
                raise InvalidRequestError("public clients must use PKCE")
        else:
            code_challenge_method = code_challenge_method or "plain"
            if code_challenge_method not in SUPPORTED_METHODS:
                raise InvalidRequestError(
                    f"unsupported code_challenge_method {code_challenge_method!r}"
                )

        if session is None or session.is_expired(clock=self.clock):
            raise InvalidGrantError("an authenticated SSO session is required")

        now = epoch_seconds(self.clock)
        code = AuthorizationCode(
            id=new_ticket_id(TicketKind.AUTHORIZATION_CODE),
            created_at=now,
            expires_at=now + self.policies.code.time_to_live(session),
            client_id=client_id,
            service=redirect_uri,
            authentication=session.authentication,
            scopes=requested,
            session_id=session.id,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method if code_challenge else None,
            nonce=nonce,
        )
        self.store.add(code)
        _LOG.info(
            "Issued authorization code %s for client_id=%s (pkce=%s)",
            mask_sensitive(code.id, 6),
            client_id,
            code.code_challenge_method or "none",
        )
        return code
