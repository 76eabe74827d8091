"""Rate limiting.

``limiter`` throttles raw HTTP traffic per client address through slowapi.
:class:`UserRateLimiter` enforces the per-user hourly budget for browser
sessions and is shared by every request handler through ``app.state``.
"""
from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from dotenv import load_dotenv
from slowapi import Limiter
from slowapi.util import get_remote_address

load_dotenv(dotenv_path=".env", encoding="utf-8")

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[os.getenv("RATE_LIMIT", "60/minute")],
)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int


@dataclass
class _Window:
    count: int
    window_start: float


class UserRateLimiter:
    """Fixed-window counter keyed by user id.

    Parameters
    ----------
    cap:
        Number of allowed uses per window.
    window:
        Window length in seconds.
    clock:
        Monotonic time source, replaceable in tests.
    """

    def __init__(self, cap: int = 10, window: float = 3600.0, clock: Callable[[], float] = time.monotonic) -> None:
        if cap <= 0:
            raise ValueError(f"cap must be > 0, got {cap}")
        if window <= 0:
            raise ValueError(f"window must be > 0, got {window}")
        self.cap = cap
        self.window = window
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check(self, user_id: str) -> RateLimitResult:
        """Count one use for ``user_id`` if the budget allows it.

        Increment and comparison happen under one lock so concurrent callers
        cannot both take the last slot.
        """
        now = self._clock()
        with self._lock:
            state = self._windows.get(user_id)
            if state is None or now - state.window_start >= self.window:
                state = _Window(count=0, window_start=now)
                self._windows[user_id] = state
            if state.count >= self.cap:
                return RateLimitResult(allowed=False, remaining=0)
            state.count += 1
            return RateLimitResult(allowed=True, remaining=max(self.cap - state.count, 0))

    def peek(self, user_id: str) -> RateLimitResult:
        """Report the current budget without consuming it."""
        now = self._clock()
        with self._lock:
            state = self._windows.get(user_id)
            if state is None or now - state.window_start >= self.window:
                return RateLimitResult(allowed=True, remaining=self.cap)
            remaining = max(self.cap - state.count, 0)
            return RateLimitResult(allowed=remaining > 0, remaining=remaining)

    def reset(self, user_id: str) -> None:
        with self._lock:
            self._windows.pop(user_id, None)

    def purge_expired(self) -> int:
        """Drop windows that have elapsed; returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [uid for uid, st in self._windows.items() if now - st.window_start >= self.window]
            for uid in stale:
                del self._windows[uid]
        return len(stale)
