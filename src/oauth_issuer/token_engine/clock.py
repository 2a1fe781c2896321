"""Clock abstraction for testable time handling in the token engine.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float``.  Every expiration decision inside the
token_engine package MUST depend on an injected ``Clock`` instance rather than
calling ``time.time()`` directly, so tickets can be aged in tests without
sleeping.

Example
-------
>>> from oauth_issuer.token_engine.clock import default_clock, epoch_seconds
>>> isinstance(default_clock(), float)
True
>>> isinstance(epoch_seconds(), int)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``.

    Returns
    -------
    float
        Seconds since the UNIX epoch.
    """
    return time.time()


def epoch_seconds(clock: Clock = default_clock) -> int:
    """Return *clock()* truncated to whole seconds (ticket timestamps are ints)."""
    return int(clock())
