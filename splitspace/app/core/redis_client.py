"""
Redis client initialization and connection management.

Redis backs the outward event stream and the short-lived limits cache.
Neither is a source of truth: the ledger never depends on Redis being up.
"""

import logging
import redis.asyncio as redis
from redis.exceptions import RedisError
from splitspace.app.core.config import settings

logger = logging.getLogger(__name__)

# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False


async def close_redis():
    await redis_client.aclose()
