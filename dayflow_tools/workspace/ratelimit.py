"""Fixed-window request limiter keyed by user id or client address."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .errors import RateLimitExceededError

__all__ = ["RateLimitDecision", "RateLimiter"]


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float


class RateLimiter:
    """Explicit, app-owned store of per-key request windows.

    Windows are created on first use and expire lazily: a key whose window
    has passed starts a fresh one on its next request. ``prune`` drops stale
    keys so the store does not grow without bound.
    """

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock or time.monotonic
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                window = _Window(count=0, reset_at=now + self.window_seconds)
                self._windows[key] = window
            window.count += 1
            allowed = window.count <= self.max_requests
            remaining = max(0, self.max_requests - window.count)
            return RateLimitDecision(allowed, remaining, window.reset_at)

    def enforce(self, key: str) -> RateLimitDecision:
        """Like :meth:`check` but raise once the window is exhausted."""

        decision = self.check(key)
        if not decision.allowed:
            raise RateLimitExceededError(retry_after=max(0.0, decision.reset_at - self._clock()))
        return decision

    def prune(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [key for key, window in self._windows.items() if window.reset_at <= now]
            for key in stale:
                del self._windows[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)
