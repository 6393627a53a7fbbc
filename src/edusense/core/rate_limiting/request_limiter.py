"""Request rate limiting using Redis.

Fixed one-minute windows keyed per user, the same shape as the
per-tenant RPM counters in API gateways.
"""

from datetime import UTC, datetime

from redis.asyncio import Redis


class RequestRateLimiter:
    """Per-user request rate limiting (RPM).

    Counts requests per calendar minute. Per-user overrides live in the
    ``user:limits:rpm`` hash.
    """

    def __init__(
        self,
        redis: Redis,
        default_rpm: int = 20,
        window_seconds: int = 60,
        scope: str = "ask",
    ):
        self.redis = redis
        self.default_rpm = default_rpm
        self.window_seconds = window_seconds
        self.scope = scope

    def _minute_key(self, user_id: str, now: datetime) -> str:
        return f"rpm:{self.scope}:{user_id}:{now.strftime('%Y%m%d%H%M')}"

    async def get_limit(self, user_id: str) -> int:
        """Get a user's RPM limit."""
        limit_raw = await self.redis.hget("user:limits:rpm", user_id)
        return int(limit_raw) if limit_raw else self.default_rpm

    async def check_and_increment(self, user_id: str) -> tuple[bool, int, int]:
        """Check if a request is allowed and increment the counter.

        Returns:
            Tuple of (allowed, remaining_requests, limit)
        """
        now = datetime.now(UTC)
        minute_key = self._minute_key(user_id, now)
        limit = await self.get_limit(user_id)

        pipe = self.redis.pipeline()
        pipe.incr(minute_key)
        pipe.expire(minute_key, self.window_seconds + 10)
        current, _ = await pipe.execute()

        allowed = current <= limit
        remaining = max(0, limit - current)

        return allowed, remaining, limit

