"""Rate limiting package.

Provides per-user request rate limiting for question endpoints using Redis.
"""

import logging
from datetime import UTC, datetime

import redis.asyncio as redis
from redis.exceptions import RedisError

from edusense.core.config import get_settings
from edusense.core.rate_limiting.request_limiter import RequestRateLimiter

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when rate limit is exceeded."""

    def __init__(self, limit: int, remaining: int, retry_after: int):
        self.limit = limit
        self.remaining = remaining
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after {retry_after}s")


class QuestionRateLimiter:
    """Guards the generation endpoints; a no-op when disabled."""

    def __init__(self, request_limiter: RequestRateLimiter | None):
        self.request_limiter = request_limiter

    async def check(self, user_id: str) -> int:
        """Count a request. Raises RateLimitExceeded if over the limit.

        Fails open when Redis is unreachable.

        Returns:
            Remaining requests in the current window (-1 when disabled)
        """
        if self.request_limiter is None:
            return -1

        try:
            allowed, remaining, limit = await self.request_limiter.check_and_increment(user_id)
        except RedisError as e:
            logger.warning(f"[RateLimit] Redis unavailable, allowing request: {e}")
            return -1

        if not allowed:
            raise RateLimitExceeded(
                limit=limit,
                remaining=0,
                retry_after=60 - datetime.now(UTC).second,
            )
        return remaining


# Global rate limiter instance
_rate_limiter: QuestionRateLimiter | None = None


async def get_rate_limiter() -> QuestionRateLimiter:
    """Get or create the global rate limiter instance."""
    global _rate_limiter

    if _rate_limiter is None:
        settings = get_settings()
        request_limiter = None
        if settings.rate_limit_enabled:
            redis_client = redis.from_url(settings.redis_url)
            request_limiter = RequestRateLimiter(redis_client, settings.rate_limit_rpm)
        _rate_limiter = QuestionRateLimiter(request_limiter)

    return _rate_limiter


__all__ = [
    "QuestionRateLimiter",
    "RateLimitExceeded",
    "RequestRateLimiter",
    "get_rate_limiter",
]
