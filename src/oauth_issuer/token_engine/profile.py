"""User profile for bearer access tokens.

Resource servers present an access token and receive the profile of the
principal it was issued for::

    {"id": "alice", "client_id": "portal", "service": "https://...",
     "attributes": {...}}

Tokens are resolved like introspection does (opaque id or JWT ``jti``), so a
revoked JWT stops yielding a profile even while its signature is valid.
Refresh tokens are not bearer credentials and are refused.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from oauth_issuer.token_engine.errors import InvalidRequestError, InvalidTokenError
from oauth_issuer.token_engine.introspection import TokenIntrospector
from oauth_issuer.token_engine.models import AccessToken
from oauth_issuer.utils.logging import mask_sensitive

_LOG = logging.getLogger("oauth-issuer.token_engine.profile")

# OpenID Connect standard claims released per scope (OIDC Core §5.4).
SCOPE_CLAIMS: dict[str, frozenset[str]] = {
    "profile": frozenset(
        {
            "name",
            "family_name",
            "given_name",
            "middle_name",
            "nickname",
            "preferred_username",
            "profile",
            "picture",
            "website",
            "gender",
            "birthdate",
            "zoneinfo",
            "locale",
            "updated_at",
        }
    ),
    "email": frozenset({"email", "email_verified"}),
    "address": frozenset({"address"}),
    "phone": frozenset({"phone_number", "phone_number_verified"}),
}


def filter_attributes(attributes: Mapping[str, Any], scopes: Iterable[str]) -> dict[str, Any]:
    """Release the attributes *scopes* allow.

    Tokens without ``openid`` are plain OAuth tokens and release every
    attribute.  For OpenID tokens, standard claims are only released when
    their scope was granted; non-standard attributes are always released.
    """
    scopes = set(scopes)
    if "openid" not in scopes:
        return dict(attributes)
    withheld = set().union(*(claims for scope, claims in SCOPE_CLAIMS.items() if scope not in scopes))
    return {k: v for k, v in attributes.items() if k not in withheld}


class UserProfileService:
    def __init__(self, introspector: TokenIntrospector) -> None:
        self.introspector = introspector

    def profile(self, access_token: str | None) -> dict[str, Any]:
        if not access_token:
            raise InvalidRequestError("access token is required")
        ticket = self.introspector.resolve(access_token)
        if not isinstance(ticket, AccessToken):
            _LOG.info("Profile requested with unusable token %s", mask_sensitive(access_token, 6))
            raise InvalidTokenError("access token is invalid, expired or revoked")

        principal = ticket.authentication.principal
        return {
            "id": principal.id,
            "client_id": ticket.client_id,
            "service": ticket.service,
            "attributes": filter_attributes(principal.attributes, ticket.scopes),
        }
