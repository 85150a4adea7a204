"""
JSON key/value cache backed by Redis, with an in-memory fallback.
"""
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


def create_redis(url: Optional[str]) -> Optional[Redis]:
    """Build a Redis client from REDIS_URL, or None when unset"""
    if not url:
        logger.warning("REDIS_URL not set. Falling back to in-memory cache and rate limiting.")
        return None
    # Pas de connexion ici : redis-py se connecte à la première commande
    return Redis.from_url(url, decode_responses=True, socket_timeout=2, socket_connect_timeout=2)


class SharedStore:
    """Cache pour les données joueur / battle log"""

    def __init__(self, redis: Optional[Redis] = None, clock: Optional[Callable[[], float]] = None):
        self.redis = redis
        self.clock = clock or time.time
        self._memory: Dict[str, Tuple[Any, float]] = {}

    async def get_json(self, key: str) -> Optional[Any]:
        if self.redis is not None:
            try:
                raw = await self.redis.get(key)
                return json.loads(raw) if raw else None
            except Exception as e:
                logger.warning(f"Redis get failed for {key}, using memory cache: {e}")

        entry = self._memory.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if expires_at < self.clock():
            del self._memory[key]
            return None
        return value

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        if self.redis is not None:
            try:
                await self.redis.set(key, json.dumps(value), ex=ttl_seconds)
                return
            except Exception as e:
                logger.warning(f"Redis set failed for {key}, using memory cache: {e}")

        self._memory[key] = (value, self.clock() + ttl_seconds)
