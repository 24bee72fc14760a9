"""Per-reporter sliding window rate limiting."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable, Optional

from core.config import RateLimitConfig


class SlidingWindowRateLimiter:
    """Admit at most ``max_messages`` per reporter within any ``window_seconds`` span.

    Instances are injected rather than shared module state, so each process
    (or test) owns its window and can reset it explicitly. Reporters whose
    window has fully expired are swept at most once per window, so the map
    only holds reporters seen recently.
    """

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic) -> None:
        self._config = config
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._next_sweep: Optional[float] = None

    def __len__(self) -> int:
        return len(self._hits)

    def allow(self, identity: str) -> bool:
        """Record an attempt and return whether it is within the limit."""

        now = self._clock()
        if self._next_sweep is None or now >= self._next_sweep:
            self._drop_expired(now)
            self._next_sweep = now + self._config.window_seconds

        hits = self._hits.setdefault(identity, deque())
        cutoff = now - self._config.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if len(hits) >= self._config.max_messages:
            return False
        hits.append(now)
        return True

    def remaining(self, identity: str) -> int:
        now = self._clock()
        cutoff = now - self._config.window_seconds
        hits = self._hits.get(identity, ())
        used = sum(1 for hit in hits if hit > cutoff)
        return max(0, self._config.max_messages - used)

    def reset(self, identity: Optional[str] = None) -> None:
        """Forget one reporter's window, or every window when no identity is given."""

        if identity is None:
            self._hits.clear()
        else:
            self._hits.pop(identity, None)

    def prune(self) -> int:
        """Drop reporters whose whole window has expired; return how many were removed."""

        return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        cutoff = now - self._config.window_seconds
        stale = [identity for identity, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for identity in stale:
            del self._hits[identity]
        return len(stale)
