"""Read-only registry of OAuth clients.

The engine only ever *looks up* clients; registration and editing are an
administrative concern outside this package.  Two implementations ship:

* :class:`InMemoryClientRegistry` – built from :class:`RegisteredClient`
  objects, used by tests and embedding applications.
* :class:`JsonFileClientRegistry` – loads a JSON array of client documents
  once at start-up (``OAUTH_ISSUER_CLIENTS_FILE``).

Client secrets are stored as bcrypt hashes and verified with
:func:`verify_client_secret`.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

import bcrypt

from oauth_issuer.token_engine.models import GrantType, RegisteredClient, ResponseType

_LOG = logging.getLogger("oauth-issuer.token_engine.registry")


@runtime_checkable
class ClientRegistry(Protocol):
    def get(self, client_id: str) -> RegisteredClient | None: ...


def hash_client_secret(secret: str) -> str:
    """Return the bcrypt hash to store in a client document."""
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_client_secret(client: RegisteredClient, secret: str | None) -> bool:
    """Return *True* when *secret* matches the client's stored hash.

    Public clients have no secret and never verify.
    """
    if client.client_secret is None or not secret:
        return False
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), client.client_secret.encode("utf-8"))
    except ValueError:
        _LOG.error("Client %s has a malformed secret hash", client.client_id)
        return False


def client_from_dict(data: Mapping[str, Any]) -> RegisteredClient:
    """Build a :class:`RegisteredClient` from its JSON document."""
    return RegisteredClient(
        client_id=data["client_id"],
        client_secret=data.get("client_secret"),
        name=data.get("name", ""),
        service_id_pattern=data.get("service_id_pattern", ".*"),
        allowed_grant_types=frozenset(
            GrantType(g) for g in data.get("allowed_grant_types", ())
        ),
        allowed_response_types=frozenset(
            ResponseType(r) for r in data.get("allowed_response_types", ("code",))
        ),
        allowed_scopes=frozenset(data.get("allowed_scopes", ())),
        jwt_access_token=bool(data.get("jwt_access_token", False)),
        generate_refresh_token=bool(data.get("generate_refresh_token", False)),
        renew_refresh_token=bool(data.get("renew_refresh_token", False)),
    )


class InMemoryClientRegistry(ClientRegistry):
    def __init__(self, clients: Iterable[RegisteredClient] = ()) -> None:
        self._clients: dict[str, RegisteredClient] = {c.client_id: c for c in clients}

    def get(self, client_id: str) -> RegisteredClient | None:
        return self._clients.get(client_id)

    def register(self, client: RegisteredClient) -> None:
        self._clients[client.client_id] = client

    def __len__(self) -> int:
        return len(self._clients)


class JsonFileClientRegistry(InMemoryClientRegistry):
    """Registry loaded from a JSON file containing a list of client documents."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path).expanduser()
        with self.path.open(encoding="utf-8") as fh:
            documents = json.load(fh)
        if not isinstance(documents, list):
            raise ValueError(f"{self.path} must contain a JSON array of clients")
        super().__init__(client_from_dict(doc) for doc in documents)
        _LOG.info("Loaded %d OAuth clients from %s", len(self), self.path)
