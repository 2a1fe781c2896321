"""Token introspection (RFC 7662) and revocation (RFC 7009).

Both operations accept either the opaque ticket id or a JWT issued by the
engine; JWTs are resolved through their ``jti`` claim, so a JWT whose ticket
was revoked or expired is reported inactive even while its signature is
still valid.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt

from oauth_issuer.token_engine.clock import Clock, default_clock
from oauth_issuer.token_engine.encoder import JwtTokenCipher
from oauth_issuer.token_engine.errors import InvalidRequestError
from oauth_issuer.token_engine.models import AccessToken, RefreshToken, RegisteredClient
from oauth_issuer.token_engine.store import TicketStore, kind_of
from oauth_issuer.utils.logging import mask_sensitive

_LOG = logging.getLogger("oauth-issuer.token_engine.introspection")

_INACTIVE: dict[str, Any] = {"active": False}


class TokenIntrospector:
    def __init__(
        self,
        store: TicketStore,
        cipher: JwtTokenCipher,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.store = store
        self.cipher = cipher
        self.clock = clock

    def resolve(self, token: str) -> AccessToken | RefreshToken | None:
        """Return the live ticket behind *token* (opaque id or JWT)."""
        ticket_id = token
        if kind_of(token) is None:
            try:
                # Expiry is judged on the stored ticket below.
                claims = self.cipher.decode(token, verify_exp=False)
            except jwt.InvalidTokenError:
                return None
            ticket_id = str(claims.get("jti") or "")
        ticket = self.store.get(ticket_id)
        if not isinstance(ticket, (AccessToken, RefreshToken)):
            return None
        if ticket.is_expired(clock=self.clock):
            return None
        return ticket

    def introspect(self, token: str) -> dict[str, Any]:
        ticket = self.resolve(token)
        if ticket is None:
            return dict(_INACTIVE)
        return {
            "active": True,
            "scope": " ".join(ticket.scopes),
            "client_id": ticket.client_id,
            "sub": ticket.authentication.principal.id,
            "aud": ticket.service,
            "iat": ticket.created_at,
            "exp": ticket.expires_at,
            "token_type": "access_token" if isinstance(ticket, AccessToken) else "refresh_token",
            "jti": ticket.id,
        }

    def revoke(self, token: str, *, client: RegisteredClient) -> bool:
        """Delete *token* if it belongs to *client*.

        Unknown tokens are not an error (RFC 7009 §2.2); the return value
        only tells whether something was deleted.  Revoking a refresh token
        leaves access tokens minted from it alive until they expire.
        """
        ticket = self.resolve(token)
        if ticket is None:
            return False
        if ticket.client_id != client.client_id:
            raise InvalidRequestError("token was not issued to this client")
        deleted = self.store.delete(ticket.id)
        _LOG.info(
            "Revoked %s %s for client_id=%s",
            ticket.kind.value,
            mask_sensitive(ticket.id, 6),
            client.client_id,
        )
        return deleted
