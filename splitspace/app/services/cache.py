"""
Caching Service.

Thin JSON cache over Redis for short-lived read-mostly data (tier limits).
A cache outage is logged and treated as a miss.
"""

import json
import logging
from typing import Any, Optional

from redis.exceptions import RedisError

import splitspace.app.core.redis_client as redis_client_module

logger = logging.getLogger(__name__)


class CacheService:

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        try:
            raw = await redis_client_module.redis_client.get(key)
        except (RedisError, OSError) as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    @staticmethod
    async def set(key: str, data: Any, ttl_seconds: int = 300):
        try:
            await redis_client_module.redis_client.set(key, json.dumps(data, default=str), ex=ttl_seconds)
        except (RedisError, OSError) as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    @staticmethod
    async def delete(key: str):
        try:
            await redis_client_module.redis_client.delete(key)
        except (RedisError, OSError) as exc:
            logger.warning("Cache invalidation failed for %s: %s", key, exc)
