"""Ticket id and user-code generation.

Ticket ids are ``<PREFIX>-<random>``: the prefix names the family (``AT-``,
``RT-``…), the random part carries 256 bits from :mod:`secrets` so ids are
unguessable, collision-resistant across processes and say nothing about how
many tickets were issued before them.

User codes follow RFC 8628 §6.1: a short, case-insensitive string drawn from
an alphabet without vowels or look-alike characters.
"""

from __future__ import annotations

import secrets
from typing import Final

from oauth_issuer.token_engine.models import TicketKind

# Base-20 alphabet recommended by RFC 8628 (no vowels, no 0/O/1/I confusion).
_USER_CODE_ALPHABET: Final[str] = "BCDFGHJKLMNPQRSTVWXZ"


def new_ticket_id(kind: TicketKind) -> str:
    return f"{kind.prefix}{secrets.token_urlsafe(32)}"


def new_user_code(length: int = 8) -> str:
    """Return a human-typable code, hyphenated in the middle (``WDJB-MJHT``)."""
    if length < 4:
        raise ValueError("user code length must be at least 4")
    raw = "".join(secrets.choice(_USER_CODE_ALPHABET) for _ in range(length))
    half = length // 2
    return f"{raw[:half]}-{raw[half:]}"


def normalize_user_code(user_code: str) -> str:
    """Canonical form used for lookups: upper-case, separators stripped."""
    return "".join(ch for ch in user_code.upper() if ch.isalnum())


def user_code_ticket_id(user_code: str) -> str:
    """Store key of the :class:`DeviceUserCode` indexing *user_code*."""
    return f"{TicketKind.DEVICE_USER_CODE.prefix}{normalize_user_code(user_code)}"
