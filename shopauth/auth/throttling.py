"""Throttling of repeated failed login attempts per client."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Deque, Dict, Optional

from ..config import settings


_TimeProvider = Callable[[], datetime]


@dataclass
class AttemptState:
    """Whether a key is blocked and for how many more seconds."""

    blocked: bool
    retry_after: int = 0


@dataclass
class _Bucket:
    failures: Deque[datetime] = field(default_factory=deque)
    blocked_until: Optional[datetime] = None


class AttemptLimiter:
    """Block a key for ``block_seconds`` after too many failures in a window."""

    def __init__(
        self,
        *,
        max_attempts: int,
        window_seconds: int,
        block_seconds: int,
        time_provider: Optional[_TimeProvider] = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be greater than zero")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be greater than zero")
        if block_seconds <= 0:
            raise ValueError("block_seconds must be greater than zero")

        self.max_attempts = max_attempts
        self.window = timedelta(seconds=window_seconds)
        self.block = timedelta(seconds=block_seconds)
        self._now: _TimeProvider = time_provider or (lambda: datetime.now(timezone.utc))
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = Lock()

    @classmethod
    def from_settings(cls) -> "AttemptLimiter":
        return cls(
            max_attempts=settings.LOGIN_ATTEMPT_LIMIT,
            window_seconds=settings.LOGIN_ATTEMPT_WINDOW,
            block_seconds=settings.LOGIN_BACKOFF_SECONDS,
        )

    def _evaluate(self, key: str, now: datetime) -> AttemptState:
        bucket = self._buckets.get(key)
        if bucket is None:
            return AttemptState(blocked=False)

        if bucket.blocked_until is not None:
            if bucket.blocked_until > now:
                remaining = int((bucket.blocked_until - now).total_seconds())
                return AttemptState(blocked=True, retry_after=max(remaining, 1))
            bucket.blocked_until = None

        cutoff = now - self.window
        while bucket.failures and bucket.failures[0] < cutoff:
            bucket.failures.popleft()
        if not bucket.failures and bucket.blocked_until is None:
            del self._buckets[key]
        return AttemptState(blocked=False)

    def check(self, key: str) -> AttemptState:
        with self._lock:
            return self._evaluate(key, self._now())

    def record_failure(self, key: str) -> AttemptState:
        """Count a failure for ``key`` and report whether it is now blocked."""

        with self._lock:
            now = self._now()
            state = self._evaluate(key, now)
            if state.blocked:
                return state

            bucket = self._buckets.setdefault(key, _Bucket())
            bucket.failures.append(now)
            if len(bucket.failures) < self.max_attempts:
                return AttemptState(blocked=False)

            bucket.failures.clear()
            bucket.blocked_until = now + self.block
            return AttemptState(
                blocked=True, retry_after=max(int(self.block.total_seconds()), 1)
            )

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)


__all__ = ["AttemptLimiter", "AttemptState"]
