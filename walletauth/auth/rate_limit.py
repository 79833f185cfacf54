from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from walletauth.auth.util import utcnow


class RateLimiter:
    """
    Simple in-memory limiter for failed signature verifications.

    Tracks failed attempts per identifier (client IP). Once `max_attempts`
    failures fall within `window_seconds`, further attempts are refused until the
    oldest one ages out. `max_attempts=0` disables limiting.
    """

    def __init__(
        self,
        max_attempts: int = 10,
        window_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._failures: Dict[str, List[datetime]] = defaultdict(list)
        self._max_attempts = max_attempts
        self._window = timedelta(seconds=window_seconds)
        self._clock = clock
        self._last_sweep: Optional[datetime] = None
        # Endpoints run in FastAPI's threadpool.
        self._lock = threading.Lock()

    def _prune(self, identifier: str, now: datetime) -> List[datetime]:
        recent = [t for t in self._failures.get(identifier, []) if now - t < self._window]
        if recent:
            self._failures[identifier] = recent
        else:
            self._failures.pop(identifier, None)
        return recent

    def _sweep(self, now: datetime) -> None:
        # Drop clients whose newest failure left the window; at most once per window.
        if self._last_sweep is not None and now - self._last_sweep < self._window:
            return
        self._last_sweep = now
        stale = [ident for ident, times in self._failures.items() if not times or now - times[-1] >= self._window]
        for ident in stale:
            del self._failures[ident]

    def check(self, identifier: str) -> Tuple[bool, int]:
        """
        Returns:
            Tuple of (is_allowed, attempts_remaining)
        """
        if self._max_attempts <= 0:
            return True, -1
        with self._lock:
            now = self._clock()
            self._sweep(now)
            recent = self._prune(identifier, now)
            remaining = self._max_attempts - len(recent)
            return remaining > 0, max(remaining, 0)

    def record_failure(self, identifier: str) -> None:
        if self._max_attempts <= 0:
            return
        with self._lock:
            now = self._clock()
            self._sweep(now)
            self._prune(identifier, now)
            self._failures[identifier].append(now)

    def __len__(self) -> int:
        """Number of clients with failures on record."""
        with self._lock:
            return len(self._failures)

    def reset(self, identifier: str) -> None:
        """Reset attempts for an identifier (e.g., after a successful verify)."""
        with self._lock:
            self._failures.pop(identifier, None)


# Global rate limiter instance
_global_rate_limiter: RateLimiter | None = None


def get_rate_limiter(max_attempts: int = 10, window_seconds: int = 300) -> RateLimiter:
    """Get global rate limiter instance (created on first use with the given limits)."""
    global _global_rate_limiter
    if _global_rate_limiter is None:
        _global_rate_limiter = RateLimiter(max_attempts=max_attempts, window_seconds=window_seconds)
    return _global_rate_limiter


def reset_rate_limiter() -> None:
    global _global_rate_limiter
    _global_rate_limiter = None
