"""Environment-driven configuration for the token engine and its HTTP surface.

All settings are read from ``OAUTH_ISSUER_*`` variables once, at start-up,
into an immutable :class:`EngineSettings`.  Components receive the settings
object (or plain values taken from it); nothing below this module calls
``os.getenv`` on the request path.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Final, Literal, Tuple

from oauth_issuer.token_engine import expiration

logger = logging.getLogger("oauth-issuer.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")
_PREFIX: Final[str] = "OAUTH_ISSUER_"

StoreBackend = Literal["memory", "disk", "redis"]


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _env(key: str) -> str | None:
    value = os.getenv(_PREFIX + key)
    if value is None:
        return None
    return value.strip() or None


def _env_flag(key: str, default: bool) -> bool:
    raw = _env(key)
    return default if raw is None else _truthy(raw)


def _env_int(key: str, default: int) -> int:
    raw = _env(key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{_PREFIX}{key} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{_PREFIX}{key} must be positive, got {value}")
    return value


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """Runtime configuration; defaults suit a single-process development setup."""

    server_prefix: str = "http://localhost:8080"
    base_path: str = "/oauth2.0"
    issuer: str | None = None
    code_ttl: int = expiration.DEFAULT_CODE_TTL
    access_token_ttl: int = expiration.DEFAULT_ACCESS_TOKEN_TTL
    refresh_token_ttl: int = expiration.DEFAULT_REFRESH_TOKEN_TTL
    device_token_ttl: int = expiration.DEFAULT_DEVICE_TOKEN_TTL
    device_interval: int = expiration.DEFAULT_DEVICE_INTERVAL
    user_code_length: int = expiration.DEFAULT_USER_CODE_LENGTH
    sovereign_access_token: bool = True
    sovereign_refresh_token: bool = True
    jwt_signing_key: str | None = None
    jwt_algorithm: str = "HS256"
    jwt_encryption_key: str | None = None
    store_backend: StoreBackend = "memory"
    store_dir: str | None = None
    redis_url: str | None = None
    clients_file: str | None = None
    authn_url: str | None = None
    session_cookie: str = "TGC"

    @property
    def endpoint_base(self) -> str:
        return f"{self.server_prefix.rstrip('/')}{self.base_path}"

    @property
    def issuer_id(self) -> str:
        return self.issuer or self.endpoint_base

    @property
    def verification_uri(self) -> str:
        return f"{self.endpoint_base}/device"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from ``OAUTH_ISSUER_*`` environment variables."""
        backend = (_env("STORE") or "memory").lower()
        if backend not in ("memory", "disk", "redis"):
            raise ValueError(f"{_PREFIX}STORE must be memory, disk or redis, got {backend!r}")
        redis_url = _env("REDIS_URL")
        if backend == "redis" and not redis_url:
            raise ValueError(f"{_PREFIX}REDIS_URL is required when {_PREFIX}STORE=redis")

        base_path = _env("BASE_PATH") or "/oauth2.0"
        if not base_path.startswith("/"):
            base_path = "/" + base_path

        settings = cls(
            server_prefix=_env("SERVER_PREFIX") or "http://localhost:8080",
            base_path=base_path.rstrip("/"),
            issuer=_env("ISSUER"),
            code_ttl=_env_int("CODE_TTL", expiration.DEFAULT_CODE_TTL),
            access_token_ttl=_env_int("ACCESS_TOKEN_TTL", expiration.DEFAULT_ACCESS_TOKEN_TTL),
            refresh_token_ttl=_env_int("REFRESH_TOKEN_TTL", expiration.DEFAULT_REFRESH_TOKEN_TTL),
            device_token_ttl=_env_int("DEVICE_TOKEN_TTL", expiration.DEFAULT_DEVICE_TOKEN_TTL),
            device_interval=_env_int("DEVICE_INTERVAL", expiration.DEFAULT_DEVICE_INTERVAL),
            user_code_length=_env_int("USER_CODE_LENGTH", expiration.DEFAULT_USER_CODE_LENGTH),
            sovereign_access_token=_env_flag("SOVEREIGN_ACCESS_TOKEN", True),
            sovereign_refresh_token=_env_flag("SOVEREIGN_REFRESH_TOKEN", True),
            jwt_signing_key=_env("JWT_SIGNING_KEY"),
            jwt_algorithm=_env("JWT_ALGORITHM") or "HS256",
            jwt_encryption_key=_env("JWT_ENCRYPTION_KEY"),
            store_backend=backend,  # type: ignore[arg-type]
            store_dir=_env("STORE_DIR"),
            redis_url=redis_url,
            clients_file=_env("CLIENTS_FILE"),
            authn_url=_env("AUTHN_URL"),
            session_cookie=_env("SESSION_COOKIE") or "TGC",
        )
        logger.debug(
            "Loaded settings: base=%s store=%s sovereign_access=%s",
            settings.endpoint_base,
            settings.store_backend,
            settings.sovereign_access_token,
        )
        return settings
