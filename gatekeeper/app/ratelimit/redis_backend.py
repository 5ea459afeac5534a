"""Redis-backed distributed rate limiter.

Implements a sliding window per client key using a Redis sorted set of
request timestamps, so the quota is shared by every gatekeeper instance.
"""

import time
import uuid
from typing import Any, Optional

import redis.asyncio as aioredis
from redis import exceptions as redis_exceptions

from gatekeeper.app.admission.ports import RATE_LIMITER, RateLimitPort
from gatekeeper.app.core.config import settings
from gatekeeper.app.core.logging import get_logger
from gatekeeper.app.exceptions import ConnectionFault, ProtocolFault
from gatekeeper.app.ratelimit.models import RateLimitResult

logger = get_logger(__name__)

# Transport level failures: the quota store could not be reached
REDIS_CONNECTION_ERRORS = (
    redis_exceptions.ConnectionError,
    redis_exceptions.TimeoutError,
    OSError,
)


class RedisRateLimitPort(RateLimitPort):
    """Redis-based distributed rate limiter.

    The client is created lazily on the first connect() and reused; redis-py
    pools the underlying sockets.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        requests_per_minute: int = 60,
        burst_size: int = 10,
        window_seconds: int = 60,
        socket_timeout: Optional[float] = None,
    ):
        """Initialize Redis rate limiter.

        Args:
            redis_client: Optional Redis client instance
            redis_url: Redis connection URL
            requests_per_minute: Maximum requests per minute
            burst_size: Maximum burst requests allowed
            window_seconds: Time window in seconds
            socket_timeout: Socket connect/read timeout in seconds
        """
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.window_seconds = window_seconds
        self._redis_url = redis_url or settings.redis_url
        self._socket_timeout = (
            settings.redis_socket_timeout if socket_timeout is None else socket_timeout
        )
        self._redis = redis_client

    @property
    def max_requests(self) -> int:
        return min(self.requests_per_minute, self.burst_size)

    async def connect(self) -> Any:
        """Get or create the Redis client.

        A freshly created client is PINGed so an unreachable server surfaces
        here rather than mid-check.

        Raises:
            ConnectionFault: If the client cannot be built or the server is down
        """
        if self._redis is not None:
            return self._redis

        try:
            client = aioredis.from_url(
                self._redis_url,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_timeout,
            )
        except ValueError as e:
            raise ConnectionFault(RATE_LIMITER, f"invalid Redis URL: {e}") from e

        try:
            await client.ping()
        except (*REDIS_CONNECTION_ERRORS, redis_exceptions.RedisError) as e:
            await client.aclose()
            raise ConnectionFault(RATE_LIMITER, f"Redis connection failed: {e}") from e
        except BaseException:
            await client.aclose()
            raise

        logger.info("Connected to Redis rate limit backend")
        self._redis = client
        return client

    async def check_and_reserve(self, handle: Any, key: str) -> RateLimitResult:
        """Reserve a slot in key's sliding window.

        Raises:
            ConnectionFault: On Redis connection loss or timeout
            ProtocolFault: On a Redis error reply or an unreadable result
        """
        now = time.time()
        window_start = now - self.window_seconds
        member = f"{now}:{uuid.uuid4().hex}"
        max_requests = self.max_requests

        try:
            pipe = handle.pipeline(transaction=True)
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {member: now})
            pipe.expire(key, self.window_seconds)
            results = await pipe.execute()

            current_count = self._parse_count(results)

            if current_count >= max_requests:
                # Denied requests do not occupy the window
                await handle.zrem(key, member)
                return RateLimitResult(
                    allowed=False,
                    limit=max_requests,
                    remaining=0,
                    reset_time=int(now + self.window_seconds),
                    retry_after=self.window_seconds
                )
        except REDIS_CONNECTION_ERRORS as e:
            raise ConnectionFault(RATE_LIMITER, f"Redis connection lost: {e}") from e
        except redis_exceptions.RedisError as e:
            raise ProtocolFault(RATE_LIMITER, f"Redis error: {e}") from e

        return RateLimitResult(
            allowed=True,
            limit=max_requests,
            remaining=max(0, max_requests - current_count - 1),
            reset_time=int(now + self.window_seconds)
        )

    @staticmethod
    def _parse_count(results: Any) -> int:
        """Extract the ZCARD reply from the pipeline results."""
        try:
            count = results[1]
        except (TypeError, IndexError, KeyError) as e:
            raise ProtocolFault(
                RATE_LIMITER, f"unexpected pipeline result: {results!r}"
            ) from e
        if isinstance(count, bool) or not isinstance(count, int):
            raise ProtocolFault(RATE_LIMITER, f"unexpected ZCARD reply: {count!r}")
        return count

    async def close(self) -> None:
        """Close the Redis client if one was opened."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
