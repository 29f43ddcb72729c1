# app/l402/ratelimit.py
"""
Rate limiting for L402 challenge issuance.

Every challenge creates an invoice on the Lightning node, so an unthrottled
client could flood the node with invoices it never intends to pay. This
module caps challenges per client IP with a sliding one-minute window.

Configuration:
- L402_CHALLENGE_RATE_LIMIT: Maximum challenges per minute per IP (0 disables)
"""
import logging
import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional, Tuple

from app.core.config import settings

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 300


class ChallengeRateLimiter:
    """
    In-memory sliding window limiter keyed by client IP.

    Thread-safe for concurrent access.
    """

    def __init__(
        self,
        limit: Optional[int] = None,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time
    ):
        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    @property
    def limit(self) -> int:
        """Challenges allowed per window (read from settings unless set explicitly)."""
        if self._limit is not None:
            return self._limit
        return settings.L402_CHALLENGE_RATE_LIMIT

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def hit(self, client_ip: str) -> Tuple[bool, int, int]:
        """
        Record a challenge request from client_ip if it is within the limit.

        Returns:
            Tuple of (is_limited, requests_in_window, limit)
        """
        limit = self.limit
        if limit == 0 or not client_ip or client_ip == "unknown":
            return (False, 0, limit)

        now = self._clock()
        window_start = now - self._window_seconds

        with self._lock:
            self._maybe_cleanup(now)
            timestamps = self._requests[client_ip]
            while timestamps and timestamps[0] <= window_start:
                timestamps.popleft()

            if len(timestamps) >= limit:
                logger.warning(
                    f"L402: Challenge rate limit exceeded for {client_ip}: "
                    f"{len(timestamps)}/{limit} in {self._window_seconds}s"
                )
                return (True, len(timestamps), limit)

            timestamps.append(now)
            return (False, len(timestamps), limit)

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()

    def _maybe_cleanup(self, now: float) -> None:
        # Caller holds self._lock
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now
        window_start = now - self._window_seconds
        stale = [ip for ip, ts in self._requests.items() if not ts or ts[-1] <= window_start]
        for ip in stale:
            del self._requests[ip]
        if stale:
            logger.debug(f"Cleaned up {len(stale)} stale rate limit entries")


# Global rate limiter instance
_rate_limiter: Optional[ChallengeRateLimiter] = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> ChallengeRateLimiter:
    global _rate_limiter

    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                _rate_limiter = ChallengeRateLimiter()

    return _rate_limiter


def check_challenge_rate_limit(client_ip: str) -> Tuple[bool, Dict[str, int]]:
    """
    Check whether client_ip may request another challenge.

    Returns:
        Tuple of (is_allowed, stats) where stats feeds get_rate_limit_headers
    """
    limiter = get_rate_limiter()
    is_limited, requests_made, limit = limiter.hit(client_ip)
    stats = {
        "requests_made": requests_made,
        "limit": limit,
        "remaining": max(0, limit - requests_made),
        "window_seconds": limiter.window_seconds,
    }
    return (not is_limited, stats)


def get_rate_limit_headers(stats: Dict[str, int]) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(stats.get("limit", 0)),
        "X-RateLimit-Remaining": str(stats.get("remaining", 0)),
        "X-RateLimit-Reset": str(stats.get("window_seconds", 60)),
    }


def reset_rate_limiter() -> None:
    """Reset the global rate limiter (useful for testing)."""
    global _rate_limiter
    with _rate_limiter_lock:
        if _rate_limiter is not None:
            _rate_limiter.reset()
        _rate_limiter = None
