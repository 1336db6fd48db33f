"""Fixed-window request limiter keyed by (scope, client identity).

Checks never block or queue: a request is either admitted or rejected
immediately with the number of seconds until its window resets. Buckets
whose window has ended are swept at most once per window, so the table
only holds clients seen within the last window or so.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from ..exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass
class RateBucket:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        window_sec: float,
        limits: dict[str, int],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_sec = window_sec
        self.limits = dict(limits)
        self._clock = clock
        self._buckets: dict[tuple[str, str], RateBucket] = {}
        self._next_sweep = 0.0

    def __len__(self) -> int:
        return len(self._buckets)

    def check(self, scope: str, identity: str) -> None:
        """Count one request; raise :class:`RateLimitExceeded` past the limit."""
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)

        key = (scope, identity)
        bucket = self._buckets.get(key)
        if bucket is None or now >= bucket.reset_at:
            self._buckets[key] = RateBucket(count=1, reset_at=now + self.window_sec)
            return

        bucket.count += 1
        limit = self.limits.get(scope)
        if limit is not None and bucket.count > limit:
            retry_after = max(1, math.ceil(bucket.reset_at - now))
            logger.warning("Rate limit hit: scope=%s client=%s retry_after=%ds", scope, identity, retry_after)
            raise RateLimitExceeded(scope, retry_after)

    def _sweep(self, now: float) -> None:
        expired = [key for key, bucket in self._buckets.items() if bucket.reset_at <= now]
        for key in expired:
            del self._buckets[key]
        if expired:
            logger.debug("Dropped %d expired rate-limit buckets", len(expired))
        self._next_sweep = now + self.window_sec
