"""
Redis client configuration.

Redis backs the readiness probe and, when ``REALTIME_REDIS_FANOUT`` is on,
the pub/sub fan-out of realtime notifications between worker processes.
"""

from typing import Optional

from redis.asyncio import Redis, from_url

from civictrack.core.config import settings

redis_client: Optional[Redis] = None


async def get_redis() -> Redis:
    """Get Redis client instance."""
    global redis_client
    if redis_client is None:
        redis_client = from_url(
            str(settings.REDIS_URL),
            encoding="utf-8",
            decode_responses=True,
        )
    return redis_client


async def close_redis():
    """Close Redis connection."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
