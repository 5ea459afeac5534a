"""Tests for the rate limiter adapters."""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock, patch

import redis

from gatekeeper.app.admission.controller import AdmissionController
from gatekeeper.app.admission.models import Decision
from gatekeeper.app.core.config import Settings
from gatekeeper.app.exceptions import ConnectionFault, ProtocolFault
from gatekeeper.app.ratelimit.factory import build_rate_limiter
from gatekeeper.app.ratelimit.memory import InMemoryRateLimitPort
from gatekeeper.app.ratelimit.models import RateLimitResult, RateLimitVerdict
from gatekeeper.app.ratelimit.redis_backend import RedisRateLimitPort

from fakes import FakeDataStore


async def reserve(limiter, key: str) -> RateLimitResult:
    handle = await limiter.connect()
    return await limiter.check_and_reserve(handle, key)


class TestInMemoryRateLimiter:
    """Tests for in-memory rate limiter."""

    @pytest.fixture
    def limiter(self):
        return InMemoryRateLimitPort(
            requests_per_minute=60,
            burst_size=10,
            window_seconds=60
        )

    @pytest.mark.asyncio
    async def test_connect_returns_self(self, limiter):
        assert await limiter.connect() is limiter

    @pytest.mark.asyncio
    async def test_sliding_window_allows_requests_under_limit(self, limiter):
        result = await reserve(limiter, "test_key")
        assert result.allowed is True
        assert result.verdict is RateLimitVerdict.ADMIT
        assert result.remaining == 9  # burst_size - 1
        assert result.limit == 10

    @pytest.mark.asyncio
    async def test_sliding_window_blocks_over_limit(self, limiter):
        for _ in range(10):
            result = await reserve(limiter, "test_key")
        assert result.remaining == 0

        result = await reserve(limiter, "test_key")
        assert result.allowed is False
        assert result.verdict is RateLimitVerdict.DENY
        assert result.remaining == 0
        assert result.retry_after >= 1

    @pytest.mark.asyncio
    async def test_different_keys_independent(self, limiter):
        for _ in range(10):
            await reserve(limiter, "key1")

        result = await reserve(limiter, "key1")
        assert result.allowed is False

        result = await reserve(limiter, "key2")
        assert result.allowed is True

    @pytest.mark.asyncio
    async def test_expired_window_resets(self, limiter):
        with patch("gatekeeper.app.ratelimit.memory.time.time", return_value=1000.0):
            for _ in range(10):
                await reserve(limiter, "test_key")
            assert (await reserve(limiter, "test_key")).allowed is False

        with patch("gatekeeper.app.ratelimit.memory.time.time", return_value=1061.0):
            assert (await reserve(limiter, "test_key")).allowed is True

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_windows(self, limiter):
        with patch("gatekeeper.app.ratelimit.memory.time.time", return_value=1000.0):
            await reserve(limiter, "old_key")
        with patch("gatekeeper.app.ratelimit.memory.time.time", return_value=1100.0):
            await reserve(limiter, "new_key")
            assert await limiter.cleanup() == 1

        assert list(limiter._quotas) == ["new_key"]

    @pytest.mark.asyncio
    async def test_key_limit_evicts_least_recently_reserved(self):
        limiter = InMemoryRateLimitPort(max_keys=3)
        for key in ("a", "b", "c"):
            await reserve(limiter, key)
        await reserve(limiter, "a")
        await reserve(limiter, "d")

        assert list(limiter._quotas) == ["c", "a", "d"]

    @pytest.mark.asyncio
    async def test_key_limit_bounds_storage(self):
        limiter = InMemoryRateLimitPort(max_keys=10)
        for i in range(25):
            await reserve(limiter, f"key{i}")
        assert len(limiter._quotas) == 10


class TestTokenBucket:
    """Tests for token bucket algorithm."""

    @pytest.mark.asyncio
    async def test_token_bucket_first_request(self):
        limiter = InMemoryRateLimitPort(
            requests_per_minute=60,
            burst_size=10,
            algorithm="token_bucket"
        )
        result = await reserve(limiter, "test_key")
        assert result.allowed is True
        assert result.remaining == 9

    @pytest.mark.asyncio
    async def test_token_bucket_blocks_when_empty(self):
        limiter = InMemoryRateLimitPort(
            requests_per_minute=60,  # 1 token per second
            burst_size=5,
            algorithm="token_bucket"
        )
        with patch("gatekeeper.app.ratelimit.memory.time.time", return_value=1000.0):
            for _ in range(5):
                assert (await reserve(limiter, "test_key")).allowed is True

            result = await reserve(limiter, "test_key")
            assert result.allowed is False
            assert result.retry_after == 1

    @pytest.mark.asyncio
    async def test_token_bucket_refills_over_time(self):
        limiter = InMemoryRateLimitPort(
            requests_per_minute=60,
            burst_size=5,
            algorithm="token_bucket"
        )
        with patch("gatekeeper.app.ratelimit.memory.time.time", return_value=1000.0):
            for _ in range(5):
                await reserve(limiter, "test_key")
        with patch("gatekeeper.app.ratelimit.memory.time.time", return_value=1002.0):
            assert (await reserve(limiter, "test_key")).allowed is True

    @pytest.mark.asyncio
    async def test_cleanup_drops_refilled_buckets(self):
        limiter = InMemoryRateLimitPort(
            requests_per_minute=60,
            burst_size=5,
            algorithm="token_bucket"
        )
        with patch("gatekeeper.app.ratelimit.memory.time.time", return_value=1000.0):
            for _ in range(5):
                await reserve(limiter, "drained")
            await reserve(limiter, "idle")
        # "idle" is full again after 1s, "drained" needs 5s
        with patch("gatekeeper.app.ratelimit.memory.time.time", return_value=1002.0):
            assert await limiter.cleanup() == 1

        assert list(limiter._quotas) == ["drained"]


def make_redis_client(zcard: int = 0):
    """Mock redis.asyncio client whose pipeline reports zcard entries."""
    client = Mock()
    client.ping = AsyncMock(return_value=True)
    client.zrem = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    pipe = Mock()
    pipe.execute = AsyncMock(return_value=[0, zcard, 1, True])
    client.pipeline.return_value = pipe
    return client, pipe


class TestRedisRateLimiter:
    """Tests for Redis rate limiter."""

    @pytest.mark.asyncio
    async def test_allows_when_under_limit(self):
        client, pipe = make_redis_client(zcard=3)
        limiter = RedisRateLimitPort(redis_client=client)

        result = await reserve(limiter, "test_key")

        assert result.allowed is True
        assert result.limit == 10
        assert result.remaining == 6
        pipe.zcard.assert_called_once_with("test_key")
        pipe.expire.assert_called_once_with("test_key", 60)
        client.zrem.assert_not_called()

    @pytest.mark.asyncio
    async def test_denies_at_limit_and_removes_own_entry(self):
        client, pipe = make_redis_client(zcard=10)
        limiter = RedisRateLimitPort(redis_client=client)

        result = await reserve(limiter, "test_key")

        assert result.allowed is False
        assert result.retry_after == 60
        added_member = next(iter(pipe.zadd.call_args.args[1]))
        client.zrem.assert_awaited_once_with("test_key", added_member)

    @pytest.mark.asyncio
    async def test_connection_error_raises_connection_fault(self):
        client, pipe = make_redis_client()
        pipe.execute.side_effect = redis.ConnectionError("Connection refused")
        limiter = RedisRateLimitPort(redis_client=client)

        with pytest.raises(ConnectionFault) as exc_info:
            await reserve(limiter, "test_key")
        assert exc_info.value.dependency == "rate_limiter"

    @pytest.mark.asyncio
    async def test_redis_timeout_raises_connection_fault(self):
        client, pipe = make_redis_client()
        pipe.execute.side_effect = redis.TimeoutError("Timeout reading from socket")
        limiter = RedisRateLimitPort(redis_client=client)

        with pytest.raises(ConnectionFault):
            await reserve(limiter, "test_key")

    @pytest.mark.asyncio
    async def test_error_reply_raises_protocol_fault(self):
        client, pipe = make_redis_client()
        pipe.execute.side_effect = redis.ResponseError("WRONGTYPE Operation against a key")
        limiter = RedisRateLimitPort(redis_client=client)

        with pytest.raises(ProtocolFault):
            await reserve(limiter, "test_key")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("results", [[0, b"three", 1, True], [0], None])
    async def test_unreadable_result_raises_protocol_fault(self, results):
        client, pipe = make_redis_client()
        pipe.execute.return_value = results
        limiter = RedisRateLimitPort(redis_client=client)

        with pytest.raises(ProtocolFault):
            await reserve(limiter, "test_key")

    @pytest.mark.asyncio
    async def test_connect_pings_new_client_once(self):
        client, _ = make_redis_client()
        with patch(
            "gatekeeper.app.ratelimit.redis_backend.aioredis.from_url",
            return_value=client,
        ) as from_url:
            limiter = RedisRateLimitPort(redis_url="redis://cache:6379/0", socket_timeout=0.2)
            assert await limiter.connect() is client
            assert await limiter.connect() is client

        from_url.assert_called_once_with(
            "redis://cache:6379/0", socket_timeout=0.2, socket_connect_timeout=0.2
        )
        client.ping.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure_raises_and_retries_next_time(self):
        client, _ = make_redis_client()
        client.ping.side_effect = redis.ConnectionError("Connection refused")
        with patch(
            "gatekeeper.app.ratelimit.redis_backend.aioredis.from_url",
            return_value=client,
        ) as from_url:
            limiter = RedisRateLimitPort(redis_url="redis://cache:6379/0")
            with pytest.raises(ConnectionFault):
                await limiter.connect()
            with pytest.raises(ConnectionFault):
                await limiter.connect()

        assert from_url.call_count == 2
        client.aclose.assert_awaited()

    @pytest.mark.asyncio
    async def test_cancelled_connect_closes_new_client(self):
        client, _ = make_redis_client()

        async def hang():
            await asyncio.sleep(10)

        client.ping = AsyncMock(side_effect=hang)
        store = FakeDataStore()
        limiter = RedisRateLimitPort(redis_url="redis://cache:6379/0")
        controller = AdmissionController(
            data_store=store, rate_limiter=limiter, rate_limit_timeout=0.05, store_timeout=0.5
        )

        with patch(
            "gatekeeper.app.ratelimit.redis_backend.aioredis.from_url",
            return_value=client,
        ):
            outcome = await controller.evaluate("ratelimit:ip:abc")

        assert outcome.decision is Decision.ALLOWED_DEGRADED
        assert outcome.diagnostics[0].error_type == "TimeoutError"
        client.aclose.assert_awaited_once()
        assert limiter._redis is None

    def test_explicit_socket_timeout_is_kept(self):
        limiter = RedisRateLimitPort(redis_url="redis://cache:6379/0", socket_timeout=0)
        assert limiter._socket_timeout == 0

    @pytest.mark.asyncio
    async def test_invalid_url_raises_connection_fault(self):
        limiter = RedisRateLimitPort(redis_url="not-a-redis-url")
        with pytest.raises(ConnectionFault):
            await limiter.connect()

    @pytest.mark.asyncio
    async def test_close_releases_client(self):
        client, _ = make_redis_client()
        limiter = RedisRateLimitPort(redis_client=client)
        await limiter.close()
        client.aclose.assert_awaited_once()
        await limiter.close()
        client.aclose.assert_awaited_once()


class TestBuildRateLimiter:
    """Tests for backend selection logic."""

    def test_disabled_returns_none(self):
        settings = Settings(_env_file=None, rate_limit_enabled=False)
        assert build_rate_limiter(settings) is None

    def test_memory_backend(self):
        settings = Settings(
            _env_file=None,
            rate_limit_backend="memory",
            rate_limit_algorithm="token_bucket",
            rate_limit_burst_size=3,
        )
        limiter = build_rate_limiter(settings)
        assert isinstance(limiter, InMemoryRateLimitPort)
        assert limiter.algorithm == "token_bucket"
        assert limiter.burst_size == 3

    def test_redis_backend_does_not_connect(self):
        settings = Settings(_env_file=None, rate_limit_backend="redis", redis_url="redis://nowhere:6379/0")
        with patch("gatekeeper.app.ratelimit.redis_backend.aioredis.from_url") as from_url:
            limiter = build_rate_limiter(settings)
        assert isinstance(limiter, RedisRateLimitPort)
        from_url.assert_not_called()


class TestRateLimitResult:

    def test_verdict_follows_allowed(self):
        assert RateLimitResult(True, 10, 9, 0).verdict is RateLimitVerdict.ADMIT
        assert RateLimitResult(False, 10, 0, 0, 5).verdict is RateLimitVerdict.DENY
