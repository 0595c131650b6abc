"""Shared async Redis connection.

Usage:
    from libs.common.redis import get_redis

    redis = await get_redis()
    await redis.set("key", "value", ex=60)
"""

from typing import Optional

import redis.asyncio as aioredis
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

_redis: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    """Get or create the process-wide Redis client."""
    global _redis
    if _redis is None:
        settings = get_settings()
        _redis = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
    return _redis


def set_redis(client: Optional[aioredis.Redis]) -> None:
    """Replace the shared client (startup wiring and tests)."""
    global _redis
    _redis = client


async def ping_redis() -> bool:
    """True if Redis answers a PING."""
    try:
        redis = await get_redis()
        return bool(await redis.ping())
    except Exception as e:
        logger.warning(f"Redis ping failed: {e}")
        return False

