"""Integration test: RedisTicketStore against a live server.

Requires ``--integration`` and ``OAUTH_ISSUER_REDIS_URL`` (for example
``redis://localhost:6379/15``).  Keys are namespaced per test run and removed
afterwards.
"""

from __future__ import annotations

import os
import threading
import time
import uuid

import pytest

from oauth_issuer.token_engine.models import (
    Authentication,
    AuthorizationCode,
    Principal,
    TicketKind,
)
from oauth_issuer.token_engine.redis_store import RedisTicketStore


@pytest.fixture
def redis_store():
    url = os.getenv("OAUTH_ISSUER_REDIS_URL")
    if not url:
        pytest.skip("OAUTH_ISSUER_REDIS_URL not set")
    prefix = f"oauth-issuer-test:{uuid.uuid4().hex}:"
    store = RedisTicketStore.from_url(url, key_prefix=prefix)
    yield store
    for key in store.client.scan_iter(match=f"{prefix}*"):
        store.client.delete(key)


def _code(ttl: int = 60) -> AuthorizationCode:
    now = int(time.time())
    return AuthorizationCode(
        id=f"OC-1-{uuid.uuid4().hex}",
        created_at=now,
        expires_at=now + ttl,
        client_id="portal",
        service="https://app.example.com/callback",
        authentication=Authentication(principal=Principal(id="alice"), authenticated_at=now),
        scopes=("openid",),
    )


@pytest.mark.integration
def test_round_trip_and_single_use(redis_store: RedisTicketStore):
    code = _code()
    redis_store.add(code)
    assert redis_store.get(code.id, TicketKind.AUTHORIZATION_CODE) == code

    winners: list[object] = []
    barrier = threading.Barrier(8)

    def _consume() -> None:
        barrier.wait()
        ticket = redis_store.consume(code.id, TicketKind.AUTHORIZATION_CODE)
        if ticket is not None:
            winners.append(ticket)

    threads = [threading.Thread(target=_consume) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(winners) == 1
    assert not redis_store.exists(code.id)


@pytest.mark.integration
def test_server_side_expiry(redis_store: RedisTicketStore):
    code = _code(ttl=1)
    redis_store.add(code)
    time.sleep(2)
    assert redis_store.get(code.id) is None
