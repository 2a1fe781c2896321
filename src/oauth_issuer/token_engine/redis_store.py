"""Redis-backed :class:`~oauth_issuer.token_engine.store.TicketStore`.

Tickets are stored as JSON strings under ``<prefix><ticket id>`` with a Redis
expiry equal to the ticket's remaining lifetime, so Redis itself evicts
expired tickets and several engine processes can share one registry.

Single-use consumption relies on ``GETDEL`` (Redis 6.2+): the server executes
read-and-delete as one command, so exactly one concurrent caller receives the
payload.
"""

from __future__ import annotations

import json
import logging

import redis

from oauth_issuer.token_engine.clock import Clock, default_clock
from oauth_issuer.token_engine.errors import TicketStoreError
from oauth_issuer.token_engine.models import (
    Ticket,
    TicketKind,
    ticket_from_dict,
    ticket_to_dict,
)
from oauth_issuer.token_engine.store import TicketStore, _kind_matches
from oauth_issuer.utils.logging import mask_sensitive

_LOG = logging.getLogger("oauth-issuer.token_engine.redis_store")


class RedisTicketStore(TicketStore):
    """Share tickets between engine instances through Redis."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        key_prefix: str = "oauth-issuer:ticket:",
        clock: Clock = default_clock,
    ) -> None:
        self.client = client
        self.key_prefix = key_prefix
        self.clock = clock

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisTicketStore":
        client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5.0)
        return cls(client, **kwargs)

    def _key(self, ticket_id: str) -> str:
        return f"{self.key_prefix}{ticket_id}"

    def _ttl(self, ticket: Ticket) -> int:
        return ticket.expires_at - int(self.clock())

    def _decode(self, raw: str | bytes | None) -> Ticket | None:
        if raw is None:
            return None
        try:
            ticket = ticket_from_dict(json.loads(raw))
        except (TypeError, ValueError, KeyError) as exc:
            raise TicketStoreError("corrupt ticket payload in redis") from exc
        if ticket.is_expired(clock=self.clock):
            return None
        return ticket

    # ---------------- contract ------------------------------------------- #
    def add(self, ticket: Ticket) -> None:
        ttl = self._ttl(ticket)
        if ttl <= 0:
            _LOG.debug("Skipping already expired %s ticket", ticket.kind.value)
            return
        try:
            self.client.set(self._key(ticket.id), json.dumps(ticket_to_dict(ticket)), ex=ttl)
        except redis.RedisError as exc:
            raise TicketStoreError(f"could not persist {ticket.kind.value} ticket") from exc

    def get(self, ticket_id: str, kind: TicketKind | None = None) -> Ticket | None:
        if not _kind_matches(ticket_id, kind):
            return None
        try:
            raw = self.client.get(self._key(ticket_id))
        except redis.RedisError as exc:
            raise TicketStoreError("ticket lookup failed") from exc
        return self._decode(raw)

    def update(self, ticket: Ticket) -> bool:
        try:
            # xx: only overwrite an existing key; keepttl: expiry is fixed at creation
            result = self.client.set(
                self._key(ticket.id),
                json.dumps(ticket_to_dict(ticket)),
                xx=True,
                keepttl=True,
            )
        except redis.RedisError as exc:
            raise TicketStoreError("ticket update failed") from exc
        return bool(result)

    def delete(self, ticket_id: str) -> bool:
        try:
            return bool(self.client.delete(self._key(ticket_id)))
        except redis.RedisError as exc:
            raise TicketStoreError("ticket delete failed") from exc

    def consume(self, ticket_id: str, kind: TicketKind | None = None) -> Ticket | None:
        if not _kind_matches(ticket_id, kind):
            return None
        try:
            raw = self.client.getdel(self._key(ticket_id))
        except redis.RedisError as exc:
            raise TicketStoreError("ticket consume failed") from exc
        ticket = self._decode(raw)
        if ticket is not None:
            _LOG.debug("Consumed ticket %s", mask_sensitive(ticket_id, 6))
        return ticket

    def exists(self, ticket_id: str) -> bool:
        try:
            return bool(self.client.exists(self._key(ticket_id)))
        except redis.RedisError as exc:
            raise TicketStoreError("ticket lookup failed") from exc

    def cleanup_expired(self) -> int:
        # Redis evicts keys on its own once their TTL elapses.
        return 0
