"""Shared fixtures for token engine and server unit tests.

All tests run against a :class:`MemoryTicketStore` driven by a controllable
fake clock, so expiry can be exercised without sleeping.  Client secrets and
user passwords are hashed with a low bcrypt cost to keep the suite fast.
"""

from __future__ import annotations

import bcrypt
import pytest

from oauth_issuer.token_engine.authn import StaticUserAuthenticator
from oauth_issuer.token_engine.encoder import JwtTokenCipher
from oauth_issuer.token_engine.models import (
    Authentication,
    GrantType,
    Principal,
    RegisteredClient,
    ResponseType,
    SsoSession,
)
from oauth_issuer.token_engine.registry import InMemoryClientRegistry
from oauth_issuer.token_engine.service import TokenEngine
from oauth_issuer.token_engine.store import MemoryTicketStore
from oauth_issuer.utils.environment import EngineSettings

NOW = 1_700_000_000
CLIENT_SECRET = "s3cr3t-value"
REDIRECT_URI = "https://app.example.com/callback"
SIGNING_KEY = "unit-test-signing-key-0123456789-abcdefghijklmnopqrstuvwxyz"
ISSUER = "https://sso.example.com/oauth2.0"

_ALL_GRANTS = frozenset(GrantType)


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, now: float = NOW) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def cheap_hash(secret: str) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryTicketStore:
    return MemoryTicketStore(clock=clock)


@pytest.fixture(scope="session")
def secret_hash() -> str:
    return cheap_hash(CLIENT_SECRET)


@pytest.fixture
def clients(secret_hash: str) -> dict[str, RegisteredClient]:
    pattern = r"https://app\.example\.com/.*"
    return {
        # Confidential web app with refresh-token rotation.
        "portal": RegisteredClient(
            client_id="portal",
            client_secret=secret_hash,
            service_id_pattern=pattern,
            allowed_grant_types=_ALL_GRANTS,
            allowed_response_types=frozenset(ResponseType),
            generate_refresh_token=True,
            renew_refresh_token=True,
        ),
        # Same, but refresh tokens are kept instead of rotated.
        "portal-keep": RegisteredClient(
            client_id="portal-keep",
            client_secret=secret_hash,
            service_id_pattern=pattern,
            allowed_grant_types=_ALL_GRANTS,
            generate_refresh_token=True,
            renew_refresh_token=False,
        ),
        # Receives JWT access tokens.
        "jwt-app": RegisteredClient(
            client_id="jwt-app",
            client_secret=secret_hash,
            service_id_pattern=pattern,
            allowed_grant_types=_ALL_GRANTS,
            jwt_access_token=True,
            generate_refresh_token=True,
        ),
        # Public single-page app / device client.
        "spa": RegisteredClient(
            client_id="spa",
            client_secret=None,
            service_id_pattern=pattern,
            allowed_grant_types=frozenset(
                {GrantType.AUTHORIZATION_CODE, GrantType.REFRESH_TOKEN, GrantType.DEVICE_CODE}
            ),
            generate_refresh_token=True,
        ),
        # Machine client restricted to client_credentials.
        "reporting": RegisteredClient(
            client_id="reporting",
            client_secret=secret_hash,
            allowed_grant_types=frozenset({GrantType.CLIENT_CREDENTIALS}),
            allowed_scopes=frozenset({"reports:read"}),
        ),
    }


@pytest.fixture
def registry(clients: dict[str, RegisteredClient]) -> InMemoryClientRegistry:
    return InMemoryClientRegistry(clients.values())


@pytest.fixture
def authenticator(clock: FakeClock) -> StaticUserAuthenticator:
    return StaticUserAuthenticator(
        {"alice": (cheap_hash("wonderland"), {"email": "alice@example.com"})},
        clock=clock,
    )


@pytest.fixture
def cipher() -> JwtTokenCipher:
    return JwtTokenCipher(SIGNING_KEY, issuer=ISSUER)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(server_prefix="https://sso.example.com")


@pytest.fixture
def engine(
    store: MemoryTicketStore,
    registry: InMemoryClientRegistry,
    cipher: JwtTokenCipher,
    settings: EngineSettings,
    authenticator: StaticUserAuthenticator,
    clock: FakeClock,
) -> TokenEngine:
    return TokenEngine(
        store=store,
        registry=registry,
        cipher=cipher,
        settings=settings,
        authenticator=authenticator,
        clock=clock,
    )


@pytest.fixture
def sso_session(store: MemoryTicketStore) -> SsoSession:
    """An 8-hour SSO session for *alice*, persisted in the store."""
    session = SsoSession(
        id="TGT-1-unit-test-session",
        created_at=NOW,
        expires_at=NOW + 8 * 3600,
        authentication=Authentication(
            principal=Principal(id="alice", attributes={"email": "alice@example.com"}),
            authenticated_at=NOW - 60,
        ),
    )
    store.add(session)
    return session
