"""TokenEngine – the token issuance pipeline behind every OAuth endpoint.

Handlers in ``oauth_issuer.servers.endpoints`` call the thin façade methods below
with an HTTP-agnostic :class:`TokenRequest`; the engine runs

    extractor registry → validator chain → token generator → response encoder

and returns an :class:`EngineResponse` (status, JSON body, headers).  Every
protocol rejection is an :class:`OAuthError` rendered with its own status
code; ticket store and authentication backend failures become
``server_error`` (HTTP 500) and are logged with their traceback.

The engine itself is stateless: all mutable state lives in the ticket store,
so any number of engines may share one store.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Mapping

from oauth_issuer.token_engine.authn import Authenticator, RestAuthenticator
from oauth_issuer.token_engine.authorize import AuthorizationCodeFactory
from oauth_issuer.token_engine.clock import Clock, default_clock
from oauth_issuer.token_engine.device import DeviceApprovalService
from oauth_issuer.token_engine.encoder import JwtTokenCipher, ResponseEncoder
from oauth_issuer.token_engine.errors import (
    AuthenticationBackendError,
    InvalidClientError,
    InvalidRequestError,
    InvalidTokenError,
    OAuthError,
    ServerError,
    TicketStoreError,
)
from oauth_issuer.token_engine.expiration import ExpirationPolicySet
from oauth_issuer.token_engine.extractors import ExtractorRegistry
from oauth_issuer.token_engine.generator import TokenGenerator
from oauth_issuer.token_engine.introspection import TokenIntrospector
from oauth_issuer.token_engine.log_utils import get_engine_logger
from oauth_issuer.token_engine.models import (
    Authentication,
    RegisteredClient,
    SsoSession,
    TicketKind,
    TokenRequest,
)
from oauth_issuer.token_engine.profile import UserProfileService
from oauth_issuer.token_engine.registry import (
    ClientRegistry,
    InMemoryClientRegistry,
    JsonFileClientRegistry,
    verify_client_secret,
)
from oauth_issuer.token_engine.store import DiskTicketStore, MemoryTicketStore, TicketStore
from oauth_issuer.token_engine.validators import ValidatorChain
from oauth_issuer.utils.environment import EngineSettings

_LOG = logging.getLogger("oauth-issuer.token_engine.service")

_NO_STORE: Mapping[str, str] = {"Cache-Control": "no-store", "Pragma": "no-cache"}


@dataclass(frozen=True, slots=True)
class EngineResponse:
    status_code: int
    body: dict[str, Any]
    headers: Mapping[str, str] = field(default_factory=lambda: dict(_NO_STORE))


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
def build_store(settings: EngineSettings, *, clock: Clock = default_clock) -> TicketStore:
    """Instantiate the ticket store backend named by *settings*."""
    if settings.store_backend == "disk":
        return DiskTicketStore(settings.store_dir, clock=clock)
    if settings.store_backend == "redis":
        # Imported lazily so the redis client is only required when selected.
        from oauth_issuer.token_engine.redis_store import RedisTicketStore

        return RedisTicketStore.from_url(settings.redis_url or "", clock=clock)
    return MemoryTicketStore(clock=clock)


def build_cipher(settings: EngineSettings) -> JwtTokenCipher:
    signing_key = settings.jwt_signing_key
    if not signing_key:
        # Ephemeral key – suitable for single-instance development setups
        signing_key = secrets.token_urlsafe(48)
        _LOG.warning(
            "OAUTH_ISSUER_JWT_SIGNING_KEY not set – generated transient key. "
            "JWT access tokens will not verify after process restart."
        )
    return JwtTokenCipher(
        signing_key,
        issuer=settings.issuer_id,
        algorithm=settings.jwt_algorithm,
        encryption_key=settings.jwt_encryption_key,
    )


def _error_response(exc: OAuthError) -> EngineResponse:
    headers = dict(_NO_STORE)
    if isinstance(exc, InvalidClientError):
        headers["WWW-Authenticate"] = 'Basic realm="oauth"'
    elif isinstance(exc, InvalidTokenError):
        headers["WWW-Authenticate"] = 'Bearer realm="oauth", error="invalid_token"'
    return EngineResponse(exc.status_code, exc.to_payload(), headers)


# --------------------------------------------------------------------------- #
# Public service                                                              #
# --------------------------------------------------------------------------- #
class TokenEngine:
    """Application service behind the token, device, introspection,
    revocation and profile endpoints."""

    def __init__(
        self,
        *,
        store: TicketStore,
        registry: ClientRegistry,
        cipher: JwtTokenCipher,
        settings: EngineSettings | None = None,
        policies: ExpirationPolicySet | None = None,
        authenticator: Authenticator | None = None,
        clock: Clock = default_clock,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.store = store
        self.registry = registry
        self.clock = clock
        self.policies = policies or ExpirationPolicySet.build(
            code_ttl=self.settings.code_ttl,
            access_token_ttl=self.settings.access_token_ttl,
            refresh_token_ttl=self.settings.refresh_token_ttl,
            device_token_ttl=self.settings.device_token_ttl,
            device_interval=self.settings.device_interval,
            user_code_length=self.settings.user_code_length,
            sovereign_access_token=self.settings.sovereign_access_token,
            sovereign_refresh_token=self.settings.sovereign_refresh_token,
            clock=clock,
        )
        self.extractors = ExtractorRegistry.default(registry, store)
        self.validators = ValidatorChain.default(store, authenticator=authenticator, clock=clock)
        self.generator = TokenGenerator(store, self.policies, clock=clock)
        self.encoder = ResponseEncoder(cipher, verification_uri=self.settings.verification_uri)
        self.introspector = TokenIntrospector(store, cipher, clock=clock)
        self.profiles = UserProfileService(self.introspector)
        self.codes = AuthorizationCodeFactory(store, registry, self.policies, clock=clock)
        self.devices = DeviceApprovalService(store)

    @classmethod
    def from_settings(cls, settings: EngineSettings | None = None) -> "TokenEngine":
        """Wire store, registry, authenticator and cipher from *settings*."""
        settings = settings or EngineSettings.from_env()
        registry: ClientRegistry = (
            JsonFileClientRegistry(settings.clients_file)
            if settings.clients_file
            else InMemoryClientRegistry()
        )
        authenticator = RestAuthenticator(settings.authn_url) if settings.authn_url else None
        return cls(
            store=build_store(settings),
            registry=registry,
            cipher=build_cipher(settings),
            settings=settings,
            authenticator=authenticator,
        )

    # ------------------------------------------------------------------ #
    # Token & device endpoints                                           #
    # ------------------------------------------------------------------ #
    def handle(self, request: TokenRequest, *, correlation_id: str | None = None) -> EngineResponse:
        """Run the full issuance pipeline for one endpoint request."""
        log = get_engine_logger(
            base_logger_name="oauth-issuer.token_engine.service",
            client_id=request.param("client_id") or (request.basic_auth or (None,))[0],
            grant_type=request.param("grant_type") or request.param("response_type"),
            correlation_id=correlation_id,
        )
        try:
            grant = self.extractors.extract(request)
            self.validators.validate(grant)
            generated = self.generator.generate(grant)
            body = self.encoder.encode(grant, generated)
        except OAuthError as exc:
            if exc.retryable:
                log.debug("Token request deferred: %s", exc.error)
            else:
                log.info("Token request rejected: %s (%s)", exc.error, exc)
            return _error_response(exc)
        except TicketStoreError:
            log.exception("Ticket store failure while issuing tokens")
            return _error_response(ServerError("ticket store unavailable"))
        except AuthenticationBackendError:
            log.exception("Authentication backend failure while issuing tokens")
            return _error_response(ServerError("authentication service unavailable"))
        return EngineResponse(200, body)

    # ------------------------------------------------------------------ #
    # Introspection & revocation                                         #
    # ------------------------------------------------------------------ #
    def authenticate_caller(
        self, request: TokenRequest, *, allow_public: bool = False
    ) -> RegisteredClient:
        """Authenticate the client calling introspection / revocation."""
        if request.basic_auth is not None:
            client_id, secret = request.basic_auth
        else:
            client_id = request.param("client_id") or ""
            secret = request.param("client_secret")
        client = self.registry.get(client_id) if client_id else None
        if client is None:
            raise InvalidClientError("unknown client")
        if client.is_public:
            if not allow_public:
                raise InvalidClientError("client authentication required")
        elif not verify_client_secret(client, secret):
            raise InvalidClientError("client authentication failed")
        return client

    def introspect(self, request: TokenRequest, *, correlation_id: str | None = None) -> EngineResponse:
        try:
            self.authenticate_caller(request)
            token = request.param("token")
            if token is None:
                raise InvalidRequestError("token is required")
            body = self.introspector.introspect(token)
        except OAuthError as exc:
            return _error_response(exc)
        except TicketStoreError:
            _LOG.exception("Ticket store failure during introspection correlation_id=%s", correlation_id or "-")
            return _error_response(ServerError("ticket store unavailable"))
        return EngineResponse(200, body)

    def revoke(self, request: TokenRequest, *, correlation_id: str | None = None) -> EngineResponse:
        try:
            client = self.authenticate_caller(request, allow_public=True)
            token = request.param("token")
            if token is None:
                raise InvalidRequestError("token is required")
            self.introspector.revoke(token, client=client)
        except OAuthError as exc:
            return _error_response(exc)
        except TicketStoreError:
            _LOG.exception("Ticket store failure during revocation correlation_id=%s", correlation_id or "-")
            return _error_response(ServerError("ticket store unavailable"))
        return EngineResponse(200, {})

    def profile(self, access_token: str | None, *, correlation_id: str | None = None) -> EngineResponse:
        """Return the profile of the principal behind a bearer access token."""
        try:
            body = self.profiles.profile(access_token)
        except OAuthError as exc:
            return _error_response(exc)
        except TicketStoreError:
            _LOG.exception("Ticket store failure during profile lookup correlation_id=%s", correlation_id or "-")
            return _error_response(ServerError("ticket store unavailable"))
        return EngineResponse(200, body)

    # ------------------------------------------------------------------ #
    # Browser-facing helpers                                             #
    # ------------------------------------------------------------------ #
    def session(self, session_id: str | None) -> SsoSession | None:
        """Return the live SSO session named by the session cookie."""
        if not session_id:
            return None
        ticket = self.store.get(session_id, TicketKind.SSO_SESSION)
        if not isinstance(ticket, SsoSession) or ticket.is_expired(clock=self.clock):
            return None
        return ticket

    def approve_device(self, user_code: str, authentication: Authentication) -> EngineResponse:
        try:
            device = self.devices.approve(user_code, authentication)
        except OAuthError as exc:
            return _error_response(exc)
        except TicketStoreError:
            _LOG.exception("Ticket store failure during device approval")
            return _error_response(ServerError("ticket store unavailable"))
        return EngineResponse(200, {"approved": True, "client_id": device.client_id})
