"""Response encoding for the token and device endpoints.

Two response shapes exist:

* **device authorization** – ``device_code``, ``user_code``,
  ``verification_uri`` (+ ``_complete``), ``expires_in``, ``interval``
* **token** – ``access_token``, ``token_type``, ``expires_in``, ``scope`` and,
  when one was generated, ``refresh_token``

Clients registered with ``jwt_access_token`` receive the access token as a
JWT signed with PyJWT; the ``jti`` claim is the ticket id, so the token can
always be resolved back to the stored ticket.  When an encryption key is
configured the signed JWT is additionally wrapped with Fernet.

``expires_in`` and ``exp`` are read from the ticket, never recomputed.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import jwt
from cryptography.fernet import Fernet, InvalidToken

from oauth_issuer.token_engine.models import (
    AccessToken,
    GeneratedToken,
    GrantRequest,
    ResponseType,
)

_LOG = logging.getLogger("oauth-issuer.token_engine.encoder")

# Claims the engine controls; principal attributes never override them.
_RESERVED_CLAIMS = frozenset(
    {"iss", "aud", "sub", "iat", "exp", "jti", "nbf", "client_id", "scope", "nonce"}
)


class JwtTokenCipher:
    """Sign (and optionally encrypt) JWTs issued by the engine."""

    def __init__(
        self,
        signing_key: str,
        *,
        issuer: str,
        algorithm: str = "HS256",
        encryption_key: str | bytes | None = None,
    ) -> None:
        if not signing_key:
            raise ValueError("a JWT signing key is required")
        self.signing_key = signing_key
        self.issuer = issuer
        self.algorithm = algorithm
        self._fernet = Fernet(encryption_key) if encryption_key else None

    @property
    def encrypts(self) -> bool:
        return self._fernet is not None

    def encode(self, claims: dict[str, Any]) -> str:
        token = jwt.encode(claims, self.signing_key, algorithm=self.algorithm)
        if self._fernet is not None:
            token = self._fernet.encrypt(token.encode("ascii")).decode("ascii")
        return token

    def decode(self, token: str, *, verify_exp: bool = True) -> dict[str, Any]:
        """Return the verified claims of *token*.

        Raises :class:`jwt.InvalidTokenError` for anything that is not a JWT
        issued (and, if configured, encrypted) by this engine.  The audience
        differs per service, so it is not verified here.
        """
        if self._fernet is not None:
            try:
                token = self._fernet.decrypt(token.encode("ascii")).decode("ascii")
            except (InvalidToken, UnicodeError) as exc:
                raise jwt.InvalidTokenError("token could not be decrypted") from exc
        return jwt.decode(
            token,
            self.signing_key,
            algorithms=[self.algorithm],
            issuer=self.issuer,
            options={"verify_aud": False, "verify_exp": verify_exp},
        )


def access_token_claims(ticket: AccessToken, *, issuer: str) -> dict[str, Any]:
    authentication = ticket.authentication
    claims: dict[str, Any] = {
        key: value
        for key, value in authentication.principal.attributes.items()
        if key not in _RESERVED_CLAIMS
    }
    claims.update(
        {
            "iss": issuer,
            "aud": ticket.service,
            "sub": authentication.principal.id,
            "iat": authentication.authenticated_at,
            "exp": ticket.expires_at,
            "jti": ticket.id,
            "client_id": ticket.client_id,
            "scope": " ".join(ticket.scopes),
        }
    )
    return claims


class ResponseEncoder:
    """Render generated tickets as the JSON body of the endpoint response."""

    def __init__(self, cipher: JwtTokenCipher, *, verification_uri: str) -> None:
        self.cipher = cipher
        self.verification_uri = verification_uri

    def encode(self, grant: GrantRequest, generated: GeneratedToken) -> dict[str, Any]:
        if generated.device_token is not None:
            return self._device_response(generated)
        return self._token_response(grant, generated)

    def _device_response(self, generated: GeneratedToken) -> dict[str, Any]:
        device = generated.device_token
        return {
            "device_code": device.id,
            "user_code": device.user_code,
            "verification_uri": self.verification_uri,
            "verification_uri_complete": (
                f"{self.verification_uri}?{urlencode({'user_code': device.user_code})}"
            ),
            "expires_in": device.expires_at - device.created_at,
            "interval": device.interval,
        }

    def _token_response(self, grant: GrantRequest, generated: GeneratedToken) -> dict[str, Any]:
        access = generated.access_token
        if access is None:
            raise ValueError("no access token was generated")

        if grant.registered_client.jwt_access_token:
            token_value = self.cipher.encode(access_token_claims(access, issuer=self.cipher.issuer))
        else:
            token_value = access.id

        body: dict[str, Any] = {
            "access_token": token_value,
            "token_type": "Bearer",
            "expires_in": access.expires_at - access.created_at,
            "scope": " ".join(access.scopes),
        }
        if generated.refresh_token is not None:
            body["refresh_token"] = generated.refresh_token.id
        if grant.response_type is ResponseType.ID_TOKEN_TOKEN:
            body["id_token"] = self.cipher.encode(self._id_token_claims(grant, access))
        if grant.state and grant.response_type in (ResponseType.TOKEN, ResponseType.ID_TOKEN_TOKEN):
            body["state"] = grant.state
        return body

    def _id_token_claims(self, grant: GrantRequest, access: AccessToken) -> dict[str, Any]:
        authentication = access.authentication
        claims: dict[str, Any] = {
            "iss": self.cipher.issuer,
            "aud": grant.client_id,
            "sub": authentication.principal.id,
            "iat": access.created_at,
            "exp": access.expires_at,
            "auth_time": authentication.authenticated_at,
        }
        if grant.nonce:
            claims["nonce"] = grant.nonce
        return claims
