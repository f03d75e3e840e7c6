"""
Gatekeeper: Fixed-Window Rate Limiter
=======================================

What:  Per-key request counters with a fixed window and a ceiling.
Why:   Throttles credential stuffing on auth endpoints and general abuse on
       the API, per (client address, identity) pair.
How:   Buckets {count, window_start} live in a striped table. A key always
       maps to the same stripe, and each stripe has its own lock, so the
       read-check-increment for one key is atomic while unrelated keys
       proceed in parallel.

Bucket state machine:
    no bucket      → first hit                       → active (count=1)
    active         → hit, now <  start + window      → active (count+1)
    active         → hit, now >= start + window      → active (count=1, start=now)

    There is no terminal state; expired buckets are recycled in place and
    pruned opportunistically so idle keys do not accumulate.

Locking:
    The lock is a threading.Lock held only for the synchronous bookkeeping,
    never across an await, so it is safe from both the event loop and the
    threadpool that runs sync endpoints.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitTier:
    name: str
    window_seconds: float
    max_requests: int
    message: str = "Too many requests"


@dataclass
class RateLimitBucket:
    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    limit: int
    remaining: int
    retry_after: int
    reset_after: int

    def headers(self) -> Dict[str, str]:
        """IETF draft RateLimit-* headers for the response."""
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_after),
        }


@dataclass
class _Stripe:
    lock: threading.Lock = field(default_factory=threading.Lock)
    buckets: Dict[str, RateLimitBucket] = field(default_factory=dict)
    hits: int = 0


class FixedWindowStore:
    """
    In-process bucket table.

    Args:
        window_seconds: Window duration
        max_requests: Hits allowed per window; hit number max_requests + 1 is refused
        clock: Monotonic time source (injectable for tests)
        stripes: Number of independently locked partitions
        prune_every: Per-stripe hit interval between expired-bucket sweeps
    """

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        clock: Clock = time.monotonic,
        stripes: int = 64,
        prune_every: int = 1000,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._stripes: List[_Stripe] = [_Stripe() for _ in range(max(1, stripes))]
        self._prune_every = prune_every

    def _stripe_for(self, key: str) -> _Stripe:
        # What: Stable key → stripe mapping for the life of the process
        # Why: Every hit on one key must take the same lock, or two hits could
        #      read the same count and both increment it
        return self._stripes[hash(key) % len(self._stripes)]

    def hit(self, key: str) -> RateLimitResult:
        """Count one request for `key` and report whether it is allowed."""
        stripe = self._stripe_for(key)
        with stripe.lock:
            now = self._clock()
            bucket = stripe.buckets.get(key)
            if bucket is None or now >= bucket.window_start + self.window_seconds:
                bucket = RateLimitBucket(count=1, window_start=now)
                stripe.buckets[key] = bucket
            else:
                bucket.count += 1
            count = bucket.count
            window_start = bucket.window_start

            stripe.hits += 1
            if stripe.hits % self._prune_every == 0:
                self._prune(stripe, now)

        # ── Build the result outside the lock ─────────────────────────────
        # count and window_start were copied while locked, so this is safe
        remaining_seconds = window_start + self.window_seconds - now
        # Never tell a refused client to retry after 0 seconds
        reset_after = max(1, math.ceil(remaining_seconds))
        allowed = count <= self.max_requests
        return RateLimitResult(
            allowed=allowed,
            count=count,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            retry_after=0 if allowed else reset_after,
            reset_after=reset_after,
        )

    def peek(self, key: str) -> Optional[RateLimitBucket]:
        stripe = self._stripe_for(key)
        with stripe.lock:
            bucket = stripe.buckets.get(key)
            if bucket is None:
                return None
            return RateLimitBucket(count=bucket.count, window_start=bucket.window_start)

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one key, or every key when called without arguments."""
        for stripe in self._stripes:
            with stripe.lock:
                if key is None:
                    stripe.buckets.clear()
                else:
                    stripe.buckets.pop(key, None)

    def _prune(self, stripe: _Stripe, now: float) -> None:
        # Caller holds stripe.lock
        expired = [
            key for key, bucket in stripe.buckets.items()
            if now >= bucket.window_start + self.window_seconds
        ]
        for key in expired:
            del stripe.buckets[key]
        if expired:
            logger.debug("Pruned %d expired rate limit buckets", len(expired))

    def __len__(self) -> int:
        return sum(len(stripe.buckets) for stripe in self._stripes)
