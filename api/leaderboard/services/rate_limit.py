"""Process-wide guard around the identity API rate limit.

The guard learns the budget from response headers (``X-RateLimit-*`` and
``Retry-After``) and is consulted before every outbound call. When the budget
is exhausted it either sleeps until the reset (if that is within
``max_wait_seconds``) or raises ``RateLimited`` so the caller can stop its
batch and reschedule.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from leaderboard.errors import RateLimited

logger = logging.getLogger(__name__)

_DEFAULT_BLOCK_SECONDS = 60.0


def _header(headers: Mapping[str, str] | None, name: str) -> Optional[str]:
    if not headers:
        return None
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def _int_header(headers: Mapping[str, str] | None, name: str) -> Optional[int]:
    raw = _header(headers, name)
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def is_rate_limit_response(status_code: int, headers: Mapping[str, str] | None, body: str = "") -> bool:
    """403/429 responses that signal an exhausted (primary or secondary) rate limit."""
    if status_code == 429:
        return True
    if status_code != 403:
        return False
    if _int_header(headers, "X-RateLimit-Remaining") == 0:
        return True
    if _header(headers, "Retry-After") is not None:
        return True
    return "rate limit" in (body or "").lower()


class RateLimitGuard:
    def __init__(
        self,
        min_remaining: int = 0,
        max_wait_seconds: float = 0.0,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_remaining = max(0, int(min_remaining))
        self.max_wait_seconds = max(0.0, float(max_wait_seconds))
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._remaining: Optional[int] = None
        self._limit: Optional[int] = None
        self._reset_epoch: Optional[float] = None
        self._blocked_until: Optional[float] = None

    def update_from_headers(self, headers: Mapping[str, str] | None) -> None:
        remaining = _int_header(headers, "X-RateLimit-Remaining")
        limit = _int_header(headers, "X-RateLimit-Limit")
        reset = _int_header(headers, "X-RateLimit-Reset")
        retry_after = _int_header(headers, "Retry-After")
        with self._lock:
            if remaining is not None:
                self._remaining = remaining
            if limit is not None:
                self._limit = limit
            if reset is not None:
                self._reset_epoch = float(reset)
            if retry_after is not None:
                self._blocked_until = self._clock() + max(0, retry_after)

    def note_rate_limited(self, headers: Mapping[str, str] | None = None) -> None:
        """Record a rate-limit response; block even if the headers were unhelpful."""
        self.update_from_headers(headers)
        with self._lock:
            now = self._clock()
            self._remaining = 0
            if self._blocked_until is None or self._blocked_until <= now:
                if self._reset_epoch is not None and self._reset_epoch > now:
                    self._blocked_until = self._reset_epoch
                else:
                    self._blocked_until = now + _DEFAULT_BLOCK_SECONDS
            until = self._blocked_until
        logger.warning("identity API rate limited; blocked for %.0fs", max(0.0, until - now))

    def _wait_locked(self, now: float) -> float:
        wait = 0.0
        if self._blocked_until is not None and self._blocked_until > now:
            wait = self._blocked_until - now
        if (
            self._remaining is not None
            and self._remaining <= self.min_remaining
            and self._reset_epoch is not None
            and self._reset_epoch > now
        ):
            wait = max(wait, self._reset_epoch - now)
        return wait

    def wait_seconds(self) -> float:
        with self._lock:
            return self._wait_locked(self._clock())

    def reset_at(self) -> Optional[datetime]:
        """When the current block lifts, or None if calls may proceed now."""
        with self._lock:
            now = self._clock()
            wait = self._wait_locked(now)
        if wait <= 0:
            return None
        return datetime.fromtimestamp(now + wait, tz=timezone.utc)

    def acquire(self) -> None:
        """Return when a call may be made; raise RateLimited if the wait is too long."""
        wait = self.wait_seconds()
        if wait <= 0:
            return
        if wait <= self.max_wait_seconds:
            logger.info("rate limit budget exhausted; sleeping %.1fs until reset", wait)
            self._sleep(wait)
            with self._lock:
                self._blocked_until = None
                self._remaining = None
            return
        reset_at = datetime.fromtimestamp(self._clock() + wait, tz=timezone.utc)
        raise RateLimited("identity API rate limit exhausted", reset_at=reset_at)

    def clear(self) -> None:
        """Forget the learned budget, e.g. after an operator confirms the window reset."""
        with self._lock:
            self._remaining = None
            self._reset_epoch = None
            self._blocked_until = None

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            now = self._clock()
            wait = self._wait_locked(now)
            return {
                "remaining": self._remaining,
                "limit": self._limit,
                "reset_at": (
                    datetime.fromtimestamp(self._reset_epoch, tz=timezone.utc).isoformat()
                    if self._reset_epoch is not None
                    else None
                ),
                "blocked": wait > 0,
                "wait_seconds": round(wait, 3),
            }
