"""Redis-backed view cache with TTL and prefix invalidation.

Read paths (blacklist lookups, loyalty balance and history) cache JSON views
here and write paths invalidate by key prefix. Every worker shares the same
Redis, so an invalidation is seen by all of them.

When Redis is unreachable the cache behaves as empty: reads miss, writes are
dropped and callers go to the database.

Usage:
    from libs.common.cache import view_cache

    await view_cache.set(f"loyalty-transactions:{customer_id}", rows, ttl_seconds=300)
    await view_cache.clear_prefix(f"loyalty-transactions:{customer_id}")
"""

import json
import re
from typing import Any, Optional

from libs.common.logging import get_logger
from libs.common.redis import get_redis

logger = get_logger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class ViewCache:
    """JSON values under ``<namespace>:<key>`` in Redis."""

    def __init__(self, namespace: str = "ordering:view"):
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Cached value, or None on a miss or when Redis is down."""
        try:
            redis = await get_redis()
            data = await redis.get(self._key(key))
        except Exception as e:
            logger.warning(f"Cache read of {key} failed: {e}")
            return None
        return json.loads(data) if data is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> bool:
        """Store ``value`` for ``ttl_seconds``. Returns False if Redis is down."""
        try:
            redis = await get_redis()
            await redis.set(self._key(key), json.dumps(value), ex=ttl_seconds)
            return True
        except Exception as e:
            logger.warning(f"Cache write of {key} failed: {e}")
            return False

    async def delete(self, key: str) -> None:
        try:
            redis = await get_redis()
            await redis.delete(self._key(key))
        except Exception as e:
            logger.warning(f"Cache delete of {key} failed: {e}")

    async def clear_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``. Returns the number removed."""
        pattern = self._key(_GLOB_SPECIAL.sub(r"\\\1", prefix)) + "*"
        try:
            redis = await get_redis()
            keys = [key async for key in redis.scan_iter(match=pattern, count=500)]
            if keys:
                await redis.delete(*keys)
        except Exception as e:
            logger.warning(f"Cache invalidation of {prefix} failed: {e}")
            return 0
        if keys:
            logger.debug("Invalidated %d cached views under %s", len(keys), prefix)
        return len(keys)


view_cache = ViewCache()
