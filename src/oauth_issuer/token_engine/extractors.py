"""Grant extractors: raw endpoint input → :class:`GrantRequest`.

Each extractor recognises one grant (or response) type, resolves the
registered client and the target service, and normalises the parameters.
Extractors never authenticate anything and never consume tickets; that is
the validators' job.

The :class:`ExtractorRegistry` tries extractors in registration order and
uses the first one that supports the request, so the PKCE variant of the
authorization-code extractor must come before the plain one.
"""

from __future__ import annotations

import logging
from typing import ClassVar, Iterable

from oauth_issuer.token_engine.errors import (
    InvalidClientError,
    InvalidRequestError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from oauth_issuer.token_engine.models import (
    GrantRequest,
    GrantType,
    RegisteredClient,
    ResponseType,
    Service,
    SsoSession,
    TicketKind,
    TokenRequest,
)
from oauth_issuer.token_engine.registry import ClientRegistry
from oauth_issuer.token_engine.store import TicketStore

_LOG = logging.getLogger("oauth-issuer.token_engine.extractors")


def _grant_type(request: TokenRequest) -> GrantType | None:
    raw = request.param("grant_type")
    if raw is None:
        return None
    try:
        return GrantType(raw)
    except ValueError:
        return None


def _response_type(request: TokenRequest) -> ResponseType | None:
    raw = request.param("response_type")
    if raw is None:
        return None
    # "token id_token" and "id_token token" name the same response type
    normalized = " ".join(sorted(raw.split()))
    try:
        return ResponseType(normalized)
    except ValueError:
        return None


def _scopes(request: TokenRequest) -> tuple[str, ...]:
    raw = request.param("scope") or ""
    return tuple(dict.fromkeys(raw.split()))


class GrantExtractor:
    """Base class; subclasses set the class attributes and ``supports``."""

    grant_type: ClassVar[GrantType | None] = None
    response_type: ClassVar[ResponseType | None] = None
    generate_refresh_token: ClassVar[bool] = True

    def __init__(self, registry: ClientRegistry, store: TicketStore) -> None:
        self.registry = registry
        self.store = store

    # ------------------------------------------------------------------ #
    # contract                                                           #
    # ------------------------------------------------------------------ #
    def supports(self, request: TokenRequest) -> bool:
        return _grant_type(request) is self.grant_type and self.grant_type is not None

    def extract(self, request: TokenRequest) -> GrantRequest:
        client_id, client_secret = self._client_credentials(request)
        client = self._resolve_client(client_id)
        grant = GrantRequest(
            grant_type=self.grant_type,
            response_type=self.response_type,
            client_id=client_id,
            registered_client=client,
            service=None,
            client_secret=client_secret,
            scopes=_scopes(request),
            redirect_uri=request.param("redirect_uri"),
            state=request.param("state"),
            nonce=request.param("nonce"),
            generate_refresh_token=self.generate_refresh_token,
        )
        self.populate(grant, request)
        return grant

    def populate(self, grant: GrantRequest, request: TokenRequest) -> None:
        """Copy grant-specific parameters and resolve the service."""
        grant.service = self._service_from_redirect(grant, required=False)

    # ------------------------------------------------------------------ #
    # helpers                                                            #
    # ------------------------------------------------------------------ #
    @staticmethod
    def _client_credentials(request: TokenRequest) -> tuple[str, str | None]:
        form_id = request.param("client_id")
        form_secret = request.param("client_secret")
        if request.basic_auth is not None:
            basic_id, basic_secret = request.basic_auth
            if form_id and form_id != basic_id:
                raise InvalidRequestError("client_id does not match the authorization header")
            if form_secret:
                raise InvalidRequestError("multiple client authentication methods used")
            return basic_id, basic_secret or None
        if not form_id:
            raise InvalidRequestError("client_id is required")
        return form_id, form_secret

    def _resolve_client(self, client_id: str) -> RegisteredClient:
        client = self.registry.get(client_id)
        if client is None:
            _LOG.info("Rejected token request for unknown client_id=%s", client_id)
            raise InvalidClientError("unknown client")
        return client

    @staticmethod
    def _require(request: TokenRequest, name: str) -> str:
        value = request.param(name)
        if value is None:
            raise InvalidRequestError(f"{name} is required")
        return value

    @staticmethod
    def _service_from_redirect(grant: GrantRequest, *, required: bool) -> Service:
        redirect_uri = grant.redirect_uri
        if redirect_uri is None:
            if required:
                raise InvalidRequestError("redirect_uri is required")
            return Service(id=grant.client_id)
        if not grant.registered_client.matches_service(redirect_uri):
            raise InvalidRequestError("redirect_uri is not registered for this client")
        return Service(id=redirect_uri)


# --------------------------------------------------------------------------- #
# Concrete extractors                                                         #
# --------------------------------------------------------------------------- #
class AuthorizationCodeExtractor(GrantExtractor):
    grant_type = GrantType.AUTHORIZATION_CODE

    def populate(self, grant: GrantRequest, request: TokenRequest) -> None:
        grant.code = self._require(request, "code")
        grant.service = self._service_from_redirect(grant, required=True)


class PkceAuthorizationCodeExtractor(AuthorizationCodeExtractor):
    """Authorization code redeemed with a ``code_verifier`` (RFC 7636)."""

    def supports(self, request: TokenRequest) -> bool:
        return super().supports(request) and request.param("code_verifier") is not None

    def populate(self, grant: GrantRequest, request: TokenRequest) -> None:
        super().populate(grant, request)
        grant.code_verifier = self._require(request, "code_verifier")


class RefreshTokenExtractor(GrantExtractor):
    grant_type = GrantType.REFRESH_TOKEN

    def populate(self, grant: GrantRequest, request: TokenRequest) -> None:
        grant.refresh_token = self._require(request, "refresh_token")
        # The token may be unknown here; the validator reports invalid_grant then.
        ticket = self.store.get(grant.refresh_token, TicketKind.REFRESH_TOKEN)
        grant.service = Service(id=ticket.service) if ticket is not None else None


class PasswordExtractor(GrantExtractor):
    grant_type = GrantType.PASSWORD

    def populate(self, grant: GrantRequest, request: TokenRequest) -> None:
        grant.username = self._require(request, "username")
        grant.password = self._require(request, "password")
        grant.service = self._service_from_redirect(grant, required=False)


class ClientCredentialsExtractor(GrantExtractor):
    grant_type = GrantType.CLIENT_CREDENTIALS
    # RFC 6749 §4.4.3: a refresh token SHOULD NOT be included.
    generate_refresh_token = False


class DeviceCodeExtractor(GrantExtractor):
    """Device authorization (``response_type=device_code``) and polling."""

    grant_type = GrantType.DEVICE_CODE

    def supports(self, request: TokenRequest) -> bool:
        return (
            _response_type(request) is ResponseType.DEVICE_CODE
            or _grant_type(request) is GrantType.DEVICE_CODE
        )

    def populate(self, grant: GrantRequest, request: TokenRequest) -> None:
        device_code = request.param("device_code") or request.param("code")
        if _grant_type(request) is GrantType.DEVICE_CODE:
            if device_code is None:
                raise InvalidRequestError("device_code is required")
            grant.device_code = device_code
            ticket = self.store.get(device_code, TicketKind.DEVICE_TOKEN)
            grant.service = Service(id=ticket.service) if ticket is not None else None
            return
        grant.response_type = ResponseType.DEVICE_CODE
        grant.service = self._service_from_redirect(grant, required=False)


class ImplicitTokenExtractor(GrantExtractor):
    """``response_type=token`` / ``id_token token`` issued from an SSO session."""

    generate_refresh_token = False

    def supports(self, request: TokenRequest) -> bool:
        return _grant_type(request) is None and _response_type(request) in (
            ResponseType.TOKEN,
            ResponseType.ID_TOKEN_TOKEN,
        )

    def extract(self, request: TokenRequest) -> GrantRequest:
        grant = super().extract(request)
        grant.response_type = _response_type(request)
        return grant

    def populate(self, grant: GrantRequest, request: TokenRequest) -> None:
        grant.service = self._service_from_redirect(grant, required=True)
        if request.sso_session_id:
            session = self.store.get(request.sso_session_id, TicketKind.SSO_SESSION)
            if isinstance(session, SsoSession):
                grant.ticket_granting_ticket = session
                grant.authentication = session.authentication


# --------------------------------------------------------------------------- #
# Registry                                                                    #
# --------------------------------------------------------------------------- #
class ExtractorRegistry:
    """Ordered extractor list; first supporting extractor wins."""

    def __init__(self, extractors: Iterable[GrantExtractor]) -> None:
        self.extractors: list[GrantExtractor] = list(extractors)

    @classmethod
    def default(cls, registry: ClientRegistry, store: TicketStore) -> "ExtractorRegistry":
        return cls(
            [
                PkceAuthorizationCodeExtractor(registry, store),
                AuthorizationCodeExtractor(registry, store),
                RefreshTokenExtractor(registry, store),
                PasswordExtractor(registry, store),
                ClientCredentialsExtractor(registry, store),
                DeviceCodeExtractor(registry, store),
                ImplicitTokenExtractor(registry, store),
            ]
        )

    def find(self, request: TokenRequest) -> GrantExtractor | None:
        return next((e for e in self.extractors if e.supports(request)), None)

    def extract(self, request: TokenRequest) -> GrantRequest:
        extractor = self.find(request)
        if extractor is not None:
            return extractor.extract(request)
        if request.param("grant_type") is not None:
            raise UnsupportedGrantTypeError(
                f"grant_type {request.param('grant_type')!r} is not supported"
            )
        if request.param("response_type") is not None:
            raise UnsupportedResponseTypeError(
                f"response_type {request.param('response_type')!r} is not supported"
            )
        raise InvalidRequestError("grant_type is required")
