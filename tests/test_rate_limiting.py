"""Tests for per-user question rate limiting."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from edusense.core.rate_limiting import QuestionRateLimiter, RateLimitExceeded
from edusense.core.rate_limiting.request_limiter import RequestRateLimiter


def make_redis(count: int, override: bytes | None = None) -> MagicMock:
    redis = MagicMock()
    redis.hget = AsyncMock(return_value=override)
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[count, True])
    redis.pipeline.return_value = pipe
    return redis


class TestRequestRateLimiter:
    @pytest.mark.asyncio
    async def test_under_limit(self):
        limiter = RequestRateLimiter(make_redis(3), default_rpm=20)

        allowed, remaining, limit = await limiter.check_and_increment("user-1")

        assert (allowed, remaining, limit) == (True, 17, 20)

    @pytest.mark.asyncio
    async def test_at_and_over_limit(self):
        assert await RequestRateLimiter(make_redis(20), 20).check_and_increment("u") == (
            True,
            0,
            20,
        )
        assert await RequestRateLimiter(make_redis(21), 20).check_and_increment("u") == (
            False,
            0,
            20,
        )

    @pytest.mark.asyncio
    async def test_per_user_override(self):
        limiter = RequestRateLimiter(make_redis(4, override=b"5"), default_rpm=20)

        assert await limiter.check_and_increment("u") == (True, 1, 5)

    @pytest.mark.asyncio
    async def test_window_key_and_expiry(self):
        redis = make_redis(1)
        limiter = RequestRateLimiter(redis, window_seconds=60)

        await limiter.check_and_increment("user-1")

        pipe = redis.pipeline.return_value
        key = pipe.incr.call_args.args[0]
        assert key.startswith("rpm:ask:user-1:")
        pipe.expire.assert_called_once_with(key, 70)


class TestQuestionRateLimiter:
    @pytest.mark.asyncio
    async def test_disabled(self):
        assert await QuestionRateLimiter(None).check("u") == -1

    @pytest.mark.asyncio
    async def test_exceeded(self):
        limiter = QuestionRateLimiter(RequestRateLimiter(make_redis(6), default_rpm=5))

        with pytest.raises(RateLimitExceeded) as exc_info:
            await limiter.check("u")

        assert exc_info.value.limit == 5
        assert 0 < exc_info.value.retry_after <= 60

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_down(self):
        request_limiter = MagicMock()
        request_limiter.check_and_increment = AsyncMock(
            side_effect=RedisConnectionError("refused")
        )

        assert await QuestionRateLimiter(request_limiter).check("u") == -1
