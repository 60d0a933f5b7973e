"""
Fixed-window request limiter keyed by conversation.

The window map is bounded: idle windows are swept every `prune_every`
checks, and the least recently used window is dropped once `max_keys`
conversations are tracked.
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Hashable

from .config import (
    RATE_LIMIT_MAX_KEYS,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_PRUNE_EVERY,
    RATE_LIMIT_WINDOW_S,
)
from .observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    reset_in_s: float


class RateLimiter:
    """Allows `max_requests` per `window_s` for each key."""

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_s: float = RATE_LIMIT_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
        *,
        max_keys: int = RATE_LIMIT_MAX_KEYS,
        prune_every: int = RATE_LIMIT_PRUNE_EVERY,
    ):
        self.max_requests = max(1, int(max_requests))
        self.window_s = float(window_s)
        self.max_keys = max(1, int(max_keys))
        self.prune_every = max(1, int(prune_every))
        self._clock = clock
        self._windows: OrderedDict[Hashable, tuple[float, int]] = OrderedDict()
        self._checks = 0
        self._lock = threading.Lock()

    def check(self, key: Hashable) -> RateDecision:
        now = self._clock()
        with self._lock:
            self._checks += 1
            if self._checks % self.prune_every == 0:
                self._purge_locked(now)

            started, count = self._windows.get(key, (now, 0))
            if now - started > self.window_s:
                started, count = now, 0
            if count >= self.max_requests:
                self._windows.move_to_end(key)
                return RateDecision(False, 0, max(0.0, self.window_s - (now - started)))
            count += 1
            self._windows[key] = (started, count)
            self._windows.move_to_end(key)
            while len(self._windows) > self.max_keys:
                self._windows.popitem(last=False)
            return RateDecision(True, self.max_requests - count, 0.0)

    def purge(self) -> int:
        """Drops windows idle for more than two window lengths."""
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        stale = [k for k, (started, _) in self._windows.items() if now - started > self.window_s * 2]
        for key in stale:
            del self._windows[key]
        if stale:
            logger.debug("rate_limit_windows_purged", count=len(stale), tracked=len(self._windows))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)
