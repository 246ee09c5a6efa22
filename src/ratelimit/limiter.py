"""In-process admission control for the retrieval endpoint.

Counts are per process and vanish on restart.  Running several workers or
instances multiplies the effective limit; swap in another AdmissionControl if
that matters.
"""

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of one admission check."""

    admitted: bool
    limit: int
    remaining: int
    retry_after: float = 0.0  # seconds; only meaningful when rejected

    @property
    def retry_after_seconds(self) -> int:
        """Retry-After rounded up to whole seconds, never below 1 when rejected."""
        if self.admitted:
            return 0
        return max(1, math.ceil(self.retry_after))


@runtime_checkable
class AdmissionControl(Protocol):
    """Interface for anything that can admit or reject a caller."""

    def check_and_record(self, key: str) -> RateLimitDecision:
        """Admit and record the request for `key`, or reject with a retry-after."""
        ...


class FixedWindowRateLimiter:
    """Allows at most `max_requests` per `window_seconds` for each key.

    Keeps the timestamps of admitted requests in a deque per key; anything
    older than the window is dropped before counting.  A single lock guards
    the whole prune-count-append sequence.

    Usage::

        limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=60)
        decision = limiter.check_and_record(client_ip)
        if not decision.admitted:
            ...  # respond 429 with decision.retry_after_seconds
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._max = max_requests
        self._window = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    @property
    def max_requests(self) -> int:
        return self._max

    @property
    def window_seconds(self) -> float:
        return self._window

    def check_and_record(self, key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            self._prune(now)
            hits = self._hits.setdefault(key, deque())

            if len(hits) >= self._max:
                retry_after = self._window - (now - hits[0])
                logger.info("Rate limit hit for %s; retry in %.1fs", key, retry_after)
                return RateLimitDecision(
                    admitted=False, limit=self._max, remaining=0, retry_after=retry_after
                )

            hits.append(now)
            return RateLimitDecision(
                admitted=True, limit=self._max, remaining=self._max - len(hits)
            )

    def _prune(self, now: float) -> None:
        """Drop expired timestamps for every key, and keys left with none."""
        cutoff = now - self._window
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]
