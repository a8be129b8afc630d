"""Fixed-window rate limiting for tool executions."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_ms: int = 0
    remaining: int = 0


class RateLimiter(Protocol):
    def check(self, key: str, limit: int | None = None) -> RateLimitDecision: ...


class WindowRateLimiter:
    """In-memory per-key counter that resets every ``window_seconds``.

    ``limit`` passed to :meth:`check` overrides the default allowance so one
    limiter can serve tools with different per-minute limits.
    """

    def __init__(
        self,
        default_limit: int = 60,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_limit = default_limit
        self._window = window_seconds
        self._clock = clock
        self._buckets: dict[str, tuple[int, float]] = {}

    def check(self, key: str, limit: int | None = None) -> RateLimitDecision:
        allowance = self._default_limit if limit is None else limit
        now = self._clock()
        count, reset_at = self._buckets.get(key, (0, now + self._window))
        if now >= reset_at:
            count, reset_at = 0, now + self._window
        count += 1
        self._buckets[key] = (count, reset_at)
        if count > allowance:
            retry_after_ms = int(max(reset_at - now, 0) * 1000)
            logger.warning(
                "Rate limit exceeded for %s (%d/%d, retry in %dms)",
                key,
                count,
                allowance,
                retry_after_ms,
            )
            return RateLimitDecision(False, retry_after_ms=retry_after_ms)
        return RateLimitDecision(True, remaining=allowance - count)

    def prune(self) -> int:
        """Drop buckets whose window has elapsed; returns how many were removed."""

        now = self._clock()
        expired = [key for key, (_, reset_at) in self._buckets.items() if now >= reset_at]
        for key in expired:
            del self._buckets[key]
        return len(expired)
