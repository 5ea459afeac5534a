"""In-memory rate limiter.

Quota state lives in this process only, so every gatekeeper instance keeps
its own limits. Use it for development and single-instance deployments;
the Redis backend shares one quota across instances.
"""

import asyncio
import math
import time
from collections import OrderedDict
from typing import Any, Optional, Union

from gatekeeper.app.admission.ports import RateLimitPort
from gatekeeper.app.ratelimit.models import RateLimitEntry, RateLimitResult, TokenBucket

QuotaState = Union[RateLimitEntry, TokenBucket]


class InMemoryRateLimitPort(RateLimitPort):
    """Process-local quota store, one state object per client key.

    Keys are ordered from least to most recently reserved. Reserving a new
    key while max_keys are held evicts the stalest key, whose client then
    starts over with a full quota. cleanup() drops state that has already
    run out on its own; the application lifespan calls it once per window.
    """

    DEFAULT_MAX_KEYS = 10000

    def __init__(
        self,
        requests_per_minute: int = 60,
        burst_size: int = 10,
        window_seconds: int = 60,
        algorithm: str = "sliding_window",
        max_keys: int = DEFAULT_MAX_KEYS,
    ):
        """Initialize the limiter.

        Args:
            requests_per_minute: Sustained request rate per key
            burst_size: Requests a key may make back to back
            window_seconds: Window length; token bucket refills over it
            algorithm: "sliding_window" or "token_bucket"
            max_keys: Most client keys tracked at once
        """
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.window_seconds = window_seconds
        self.algorithm = algorithm
        self.max_keys = max_keys

        self._quotas: OrderedDict[str, QuotaState] = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def limit(self) -> int:
        if self.algorithm == "token_bucket":
            return self.burst_size
        return min(self.requests_per_minute, self.burst_size)

    @property
    def refill_rate(self) -> float:
        """Tokens regained per second."""
        return self.requests_per_minute / self.window_seconds

    async def connect(self) -> "InMemoryRateLimitPort":
        """Nothing to connect to; the limiter is its own handle."""
        return self

    async def check_and_reserve(self, handle: Any, key: str) -> RateLimitResult:
        async with self._lock:
            now = time.time()
            # Re-inserting moves the key to the most recent end
            state = self._quotas.pop(key, None)
            if self.algorithm == "token_bucket":
                state, result = self._take_token(state, now)
            else:
                state, result = self._count_request(state, now)
            self._quotas[key] = state

            if len(self._quotas) > self.max_keys:
                self._quotas.popitem(last=False)
            return result

    async def cleanup(self) -> int:
        """Forget every key whose state has run out.

        Returns:
            Number of keys removed
        """
        async with self._lock:
            now = time.time()
            spent = [key for key, state in self._quotas.items() if self._spent(state, now)]
            for key in spent:
                del self._quotas[key]
        return len(spent)

    def _spent(self, state: QuotaState, now: float) -> bool:
        """True once state is indistinguishable from a brand new key."""
        if isinstance(state, TokenBucket):
            refilled = state.tokens + (now - state.last_update) * self.refill_rate
            return refilled >= self.burst_size
        return now - state.window_start > self.window_seconds

    def _count_request(
        self, entry: Optional[RateLimitEntry], now: float
    ) -> tuple[RateLimitEntry, RateLimitResult]:
        if entry is None or self._spent(entry, now):
            entry = RateLimitEntry(requests=0, window_start=now)

        window_end = entry.window_start + self.window_seconds
        if entry.requests >= self.limit:
            return entry, RateLimitResult(
                allowed=False,
                limit=self.limit,
                remaining=0,
                reset_time=int(window_end),
                retry_after=max(1, math.ceil(window_end - now)),
            )

        entry.requests += 1
        return entry, RateLimitResult(
            allowed=True,
            limit=self.limit,
            remaining=self.limit - entry.requests,
            reset_time=int(window_end),
        )

    def _take_token(
        self, bucket: Optional[TokenBucket], now: float
    ) -> tuple[TokenBucket, RateLimitResult]:
        if bucket is None:
            bucket = TokenBucket(tokens=float(self.burst_size), last_update=now)
        else:
            refilled = bucket.tokens + (now - bucket.last_update) * self.refill_rate
            bucket.tokens = min(float(self.burst_size), refilled)
            bucket.last_update = now

        if bucket.tokens < 1:
            retry_after = max(1, math.ceil((1 - bucket.tokens) / self.refill_rate))
            return bucket, RateLimitResult(
                allowed=False,
                limit=self.burst_size,
                remaining=0,
                reset_time=int(now + retry_after),
                retry_after=retry_after,
            )

        bucket.tokens -= 1
        return bucket, RateLimitResult(
            allowed=True,
            limit=self.burst_size,
            remaining=int(bucket.tokens),
            reset_time=int(now + (self.burst_size - bucket.tokens) / self.refill_rate),
        )
