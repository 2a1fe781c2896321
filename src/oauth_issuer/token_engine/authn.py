"""Resource-owner authenticators used by the ``password`` grant.

The engine does not own user accounts.  An :class:`Authenticator` turns a
username/password pair into an :class:`Authentication` or raises
:class:`AuthenticationFailure`; the password validator maps that failure to
``invalid_grant``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, runtime_checkable

import bcrypt
import requests

from oauth_issuer.token_engine.clock import Clock, default_clock
from oauth_issuer.token_engine.errors import AuthenticationBackendError, AuthenticationFailure
from oauth_issuer.token_engine.models import Authentication, Principal

_LOG = logging.getLogger("oauth-issuer.token_engine.authn")


@runtime_checkable
class Authenticator(Protocol):
    def authenticate(self, username: str, password: str) -> Authentication: ...


class StaticUserAuthenticator(Authenticator):
    """Users kept in memory as ``username -> (bcrypt hash, attributes)``."""

    def __init__(
        self,
        users: Mapping[str, tuple[str, Mapping[str, Any]]] | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self._users = dict(users or {})
        self.clock = clock

    def add_user(self, username: str, password: str, attributes: Mapping[str, Any] | None = None) -> None:
        hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
        self._users[username] = (hashed, dict(attributes or {}))

    def authenticate(self, username: str, password: str) -> Authentication:
        entry = self._users.get(username)
        if entry is None:
            raise AuthenticationFailure("unknown user")
        stored_hash, attributes = entry
        if not bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8")):
            raise AuthenticationFailure("bad credentials")
        return Authentication(
            principal=Principal(id=username, attributes=dict(attributes)),
            authenticated_at=int(self.clock()),
        )


class RestAuthenticator(Authenticator):
    """Delegate credential checks to a REST endpoint.

    The endpoint receives the credentials as HTTP Basic auth and answers
    ``200`` with ``{"id": ..., "attributes": {...}}`` on success.  ``401`` and
    ``403`` mean bad credentials; any other status, a transport error or a
    body that is not a JSON object raises :class:`AuthenticationBackendError`.
    """

    def __init__(self, url: str, *, clock: Clock = default_clock, timeout: tuple[int, int] = (5, 20)) -> None:
        self.url = url
        self.clock = clock
        self.timeout = timeout

    def authenticate(self, username: str, password: str) -> Authentication:
        try:
            resp = requests.post(self.url, auth=(username, password), timeout=self.timeout)
        except requests.RequestException as exc:
            raise AuthenticationBackendError(f"Authentication request failed: {exc}") from exc

        if resp.status_code in (401, 403):
            raise AuthenticationFailure("bad credentials")
        if not resp.ok:
            raise AuthenticationBackendError(
                f"Authentication endpoint returned {resp.status_code}: {resp.text[:200]}"
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthenticationBackendError("Authentication endpoint returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise AuthenticationBackendError("Authentication endpoint returned an unexpected payload")

        principal_id = data.get("id") or username
        _LOG.debug("REST authentication succeeded for principal=%s", principal_id)
        return Authentication(
            principal=Principal(id=principal_id, attributes=dict(data.get("attributes") or {})),
            authenticated_at=int(self.clock()),
        )
