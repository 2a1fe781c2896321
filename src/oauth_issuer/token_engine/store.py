"""Concurrency-safe ticket storage for the token engine.

This module introduces a *narrow* persistence interface
(:class:`TicketStore`) and two local implementations:

* :class:`MemoryTicketStore` – process-local, backed by a
  :class:`cachetools.TLRUCache` whose per-entry expiry is the ticket's own
  ``expires_at``.
* :class:`DiskTicketStore` – JSON files, shareable between processes on one
  host.

The Redis implementation lives in :mod:`oauth_issuer.token_engine.redis_store`.

Every backend honours the same guarantees:

* **Atomic consume** – :meth:`TicketStore.consume` returns a ticket to at most
  one caller; every concurrent caller gets ``None``.
* **Expiry** – expired tickets are never returned.
* **Kind safety** – lookups with a ``kind`` refuse ids whose prefix belongs to
  another family, so a misplaced token can never burn an unrelated ticket.
* **Failure surfacing** – backend errors raise :class:`TicketStoreError`.

Environment variables
---------------------
OAUTH_ISSUER_STORE_DIR
    Base directory of :class:`DiskTicketStore`.
    Defaults to ``~/.oauth-issuer/tickets`` when unset.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import threading
import time
from contextlib import contextmanager
from hashlib import sha256
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

from cachetools import TLRUCache

from oauth_issuer.token_engine.clock import Clock, default_clock
from oauth_issuer.token_engine.errors import TicketStoreError
from oauth_issuer.token_engine.models import (
    Ticket,
    TicketKind,
    ticket_from_dict,
    ticket_to_dict,
)
from oauth_issuer.utils.logging import mask_sensitive

_LOG = logging.getLogger("oauth-issuer.token_engine.store")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def kind_of(ticket_id: str) -> TicketKind | None:
    """Return the ticket family encoded in *ticket_id*'s prefix."""
    head, sep, _ = ticket_id.partition("-")
    if not sep:
        return None
    try:
        return TicketKind(head)
    except ValueError:
        return None


def _kind_matches(ticket_id: str, kind: TicketKind | None) -> bool:
    return kind is None or kind_of(ticket_id) is kind


def _hash(text: str, length: int = 32) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(f".{secrets.token_hex(4)}.tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


@contextmanager
def _file_lock(lock_path: Path, retries: int = 25, delay: float = 0.05):  # noqa: D401
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break  # acquired!
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class TicketStore(Protocol):
    """Minimal persistence contract for issued tickets."""

    def add(self, ticket: Ticket) -> None: ...
    def get(self, ticket_id: str, kind: TicketKind | None = None) -> Ticket | None: ...
    def update(self, ticket: Ticket) -> bool: ...
    def delete(self, ticket_id: str) -> bool: ...
    def consume(self, ticket_id: str, kind: TicketKind | None = None) -> Ticket | None: ...
    def exists(self, ticket_id: str) -> bool: ...

    # ----- maintenance ----------------------------------------------------- #
    def cleanup_expired(self) -> int: ...


# --------------------------------------------------------------------------- #
# Memory implementation                                                       #
# --------------------------------------------------------------------------- #


def _ticket_expiry(_key: str, ticket: Ticket, _now: float) -> float:
    return float(ticket.expires_at)


class _TicketCache(TLRUCache):
    """TLRU cache that reports evictions of live tickets.

    Expired entries are purged before anything is evicted, so every
    ``popitem`` here drops a ticket that was still valid.
    """

    def popitem(self):
        key, ticket = super().popitem()
        _LOG.warning(
            "Ticket cache full (maxsize=%d): evicted live %s ticket %s",
            self.maxsize,
            ticket.kind.value,
            mask_sensitive(key, 6),
        )
        return key, ticket


class MemoryTicketStore(TicketStore):
    """In-process store; a single lock makes every operation atomic.

    The store holds at most *maxsize* tickets.  Once full, adding a ticket
    evicts the least recently used live one and logs a warning; size the
    bound for the expected number of outstanding refresh tokens.
    """

    def __init__(self, *, maxsize: int = 100_000, clock: Clock = default_clock) -> None:
        self.clock = clock
        self._cache: TLRUCache = _TicketCache(
            maxsize=maxsize, ttu=_ticket_expiry, timer=clock
        )
        self._lock = threading.Lock()

    def add(self, ticket: Ticket) -> None:
        with self._lock:
            self._cache[ticket.id] = ticket

    def get(self, ticket_id: str, kind: TicketKind | None = None) -> Ticket | None:
        if not _kind_matches(ticket_id, kind):
            return None
        with self._lock:
            return self._cache.get(ticket_id)

    def update(self, ticket: Ticket) -> bool:
        with self._lock:
            if ticket.id not in self._cache:
                return False
            self._cache[ticket.id] = ticket
            return True

    def delete(self, ticket_id: str) -> bool:
        with self._lock:
            return self._cache.pop(ticket_id, None) is not None

    def consume(self, ticket_id: str, kind: TicketKind | None = None) -> Ticket | None:
        if not _kind_matches(ticket_id, kind):
            return None
        with self._lock:
            return self._cache.pop(ticket_id, None)

    def exists(self, ticket_id: str) -> bool:
        with self._lock:
            return ticket_id in self._cache

    def cleanup_expired(self) -> int:
        with self._lock:
            expired = self._cache.expire()
        return len(list(expired or ()))

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskTicketStore(TicketStore):
    """JSON-file implementation of :class:`TicketStore`.

    Layout: ``<base>/<KIND>/<sha256(id)>.json``.  Consumption renames the file
    into ``<base>/consumed/`` first; ``os.replace`` succeeds for exactly one
    racer, which is what makes codes single-use across processes.
    """

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("OAUTH_ISSUER_STORE_DIR")
            or Path.home() / ".oauth-issuer" / "tickets"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.clock = clock

    # ---------------- paths ---------------------------------------------- #
    def _path(self, ticket_id: str) -> Path | None:
        kind = kind_of(ticket_id)
        if kind is None:
            return None
        return self.base_dir / kind.value / f"{_hash(ticket_id)}.json"

    def _lock_path(self, path: Path) -> Path:
        return path.with_suffix(".lock")

    def _consumed_path(self, ticket_id: str) -> Path:
        return self.base_dir / "consumed" / f"{_hash(ticket_id)}.{secrets.token_hex(4)}.json"

    # ---------------- io ------------------------------------------------- #
    def _read(self, path: Path) -> Ticket | None:
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise TicketStoreError(f"unreadable ticket file {path.name}") from exc
        return ticket_from_dict(data)

    def _write(self, path: Path, ticket: Ticket) -> None:
        try:
            _atomic_write(path, ticket_to_dict(ticket))
        except OSError as exc:
            raise TicketStoreError(f"could not persist {ticket.kind.value} ticket") from exc

    # ---------------- contract ------------------------------------------- #
    def add(self, ticket: Ticket) -> None:
        path = self._path(ticket.id)
        if path is None:
            raise TicketStoreError("ticket id carries no known prefix")
        self._write(path, ticket)

    def get(self, ticket_id: str, kind: TicketKind | None = None) -> Ticket | None:
        path = self._path(ticket_id)
        if path is None or not _kind_matches(ticket_id, kind):
            return None
        ticket = self._read(path)
        if ticket is None or ticket.is_expired(clock=self.clock):
            return None
        return ticket

    def update(self, ticket: Ticket) -> bool:
        path = self._path(ticket.id)
        if path is None:
            return False
        try:
            with _file_lock(self._lock_path(path)):
                if not path.exists():
                    return False
                self._write(path, ticket)
                return True
        except TimeoutError as exc:
            raise TicketStoreError("ticket update lock timed out") from exc

    def delete(self, ticket_id: str) -> bool:
        path = self._path(ticket_id)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise TicketStoreError("could not delete ticket file") from exc
        return True

    def consume(self, ticket_id: str, kind: TicketKind | None = None) -> Ticket | None:
        """Return and atomically remove the ticket (single-use)."""
        src = self._path(ticket_id)
        if src is None or not _kind_matches(ticket_id, kind) or not src.exists():
            return None
        dst = self._consumed_path(ticket_id)
        dst.parent.mkdir(parents=True, exist_ok=True)
        # Same lock as update(): a write racing this rename cannot resurrect the ticket.
        try:
            with _file_lock(self._lock_path(src)):
                os.replace(src, dst)  # atomic rename – fails if concurrent consumer won
        except FileNotFoundError:
            return None  # someone else won the race
        except TimeoutError as exc:
            raise TicketStoreError("ticket consume lock timed out") from exc
        try:
            ticket = self._read(dst)
        finally:
            dst.unlink(missing_ok=True)
        if ticket is None or ticket.is_expired(clock=self.clock):
            return None
        _LOG.debug("Consumed ticket %s", mask_sensitive(ticket_id, 6))
        return ticket

    def exists(self, ticket_id: str) -> bool:
        return self.get(ticket_id) is not None

    # ---------------- maintenance ---------------------------------------- #
    def _ticket_files(self) -> Iterator[Path]:
        for kind in TicketKind:
            folder = self.base_dir / kind.value
            if folder.exists():
                yield from folder.glob("*.json")

    def cleanup_expired(self) -> int:
        removed = 0
        now = self.clock()
        for p in self._ticket_files():
            try:
                with p.open(encoding="utf-8") as fh:
                    expires_at = int(json.load(fh).get("expires_at", 0))
            except FileNotFoundError:
                continue  # consumed concurrently
            except (OSError, ValueError):
                _LOG.warning("Skipping unreadable ticket file %s", p.name)
                continue
            if now >= expires_at:
                p.unlink(missing_ok=True)
                removed += 1
        return removed
