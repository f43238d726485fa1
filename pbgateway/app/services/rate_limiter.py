"""Per-client token bucket rate limiting.

Buckets live in process memory, keyed by client identity (normally the
source address). They are created lazily on first sight and removed only
by the idle-time sweep run by ``BucketReaper``; request handling never
deletes them.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from pbgateway.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RatePolicy:
    """Process-wide rate policy, immutable after startup."""
    requests_per_minute: int = 60
    burst_capacity: int = 10

    @property
    def tokens_per_second(self) -> float:
        return self.requests_per_minute / 60.0


@dataclass
class TokenBucket:
    """Token bucket state for a single identity."""
    tokens: float = 0.0
    last_refill: float = field(default_factory=time.monotonic)


class TokenBucketRateLimiter:
    """In-memory token bucket rate limiter.

    Fractional tokens are kept so sub-second bursts refill smoothly. The
    bucket table is guarded by an ``asyncio.Lock``; the critical section
    contains no awaits, so a check is atomic with respect to other requests
    on the same event loop.

    Suitable for single-instance deployments only.
    """

    def __init__(
        self,
        policy: Optional[RatePolicy] = None,
        idle_timeout: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limiter.

        Args:
            policy: Rate and burst configuration
            idle_timeout: Seconds without a request after which a bucket is
                eligible for removal by ``sweep``
            clock: Monotonic time source in seconds
        """
        self.policy = policy or RatePolicy()
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def get_bucket(self, identity: str) -> Optional[TokenBucket]:
        return self._buckets.get(identity)

    async def admit(self, identity: str) -> bool:
        """Consume one token for ``identity``.

        Returns:
            True if the request is admitted, False if it is rate limited
        """
        async with self._lock:
            return self._take(identity)

    def _take(self, identity: str) -> bool:
        now = self._clock()
        burst = float(self.policy.burst_capacity)

        bucket = self._buckets.get(identity)
        if bucket is None:
            bucket = TokenBucket(tokens=burst, last_refill=now)
            self._buckets[identity] = bucket

        elapsed = max(0.0, now - bucket.last_refill)
        bucket.tokens = min(burst, bucket.tokens + elapsed * self.policy.tokens_per_second)
        bucket.last_refill = now

        if bucket.tokens < 1:
            return False

        bucket.tokens -= 1
        return True

    def retry_after(self, identity: str) -> int:
        """Seconds until ``identity`` has a whole token again (at least 1)."""
        bucket = self._buckets.get(identity)
        if bucket is None or bucket.tokens >= 1:
            return 1
        needed = 1 - bucket.tokens
        return max(1, int(needed / self.policy.tokens_per_second + 0.999))

    async def sweep(self) -> int:
        """Remove buckets idle longer than ``idle_timeout``.

        The table is scanned from a snapshot without holding the lock; the
        lock is taken only to delete, and staleness is re-checked so a
        bucket touched in between survives.

        Returns:
            Number of buckets removed
        """
        now = self._clock()
        stale = [
            identity for identity, bucket in list(self._buckets.items())
            if now - bucket.last_refill > self.idle_timeout
        ]
        if not stale:
            return 0

        removed = 0
        async with self._lock:
            for identity in stale:
                bucket = self._buckets.get(identity)
                if bucket is not None and now - bucket.last_refill > self.idle_timeout:
                    del self._buckets[identity]
                    removed += 1
        return removed

    def reset(self) -> None:
        """Drop all buckets."""
        self._buckets.clear()


class BucketReaper:
    """Background task that periodically sweeps idle buckets.

    Usage:
        reaper = BucketReaper(limiter, interval=60.0)
        await reaper.start()
        ...
        await reaper.stop()
    """

    def __init__(self, limiter: TokenBucketRateLimiter, interval: float = 60.0):
        self._limiter = limiter
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task is not None:
            logger.debug("Bucket reaper already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started bucket reaper (interval: {self._interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Bucket reaper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped bucket reaper")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                removed = await self._limiter.sweep()
                if removed:
                    logger.debug(
                        f"Reaped {removed} idle rate limit buckets",
                        extra={"remaining": len(self._limiter)},
                    )
            except Exception as e:
                logger.error(f"Error during bucket sweep: {e}")
