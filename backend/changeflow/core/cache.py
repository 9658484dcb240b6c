"""Best-effort Redis cache used for read-through caching and audit mirrors.

The cache is an optimization only: every operation swallows and logs its own
failures and returns a neutral value, so a Redis outage never fails a
request.
"""

import json
import logging
from typing import Any

import redis

from changeflow.core.config import settings

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


def entity_key(entity_type: str, entity_id: str) -> str:
    return f"{entity_type}:{entity_id}"


def tenant_list_pattern(tenant_id: Any, entity_type: str) -> str:
    return f"tenant:{tenant_id}:{entity_type}:list*"


def global_list_pattern(entity_type: str) -> str:
    return f"{entity_type}:list*"


def recent_audit_key(tenant_id: Any, entity_type: str, entity_id: str) -> str:
    return f"audit:recent:{tenant_id}:{entity_type}:{entity_id}"


def activity_counter_key(tenant_id: Any, user_id: str, day: str) -> str:
    return f"activity:{tenant_id}:{user_id}:{day}"


class RedisCache:
    """JSON key/value cache on top of a redis-py client.

    A ``None`` client turns every operation into a no-op.
    """

    def __init__(self, client: redis.Redis | None):
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Any | None:
        if self.client is None:
            return None
        try:
            raw = self.client.get(key)
        except Exception:
            logger.exception("Cache get failed for %s", key)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache value for %s", key)
            return None

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if self.client is None:
            return False
        try:
            self.client.set(
                key,
                json.dumps(value, default=str),
                ex=ttl if ttl is not None else settings.CACHE_DEFAULT_TTL_SECONDS,
            )
            return True
        except Exception:
            logger.exception("Cache set failed for %s", key)
            return False

    def delete(self, *keys: str) -> int:
        if self.client is None or not keys:
            return 0
        try:
            return int(self.client.delete(*keys))
        except Exception:
            logger.exception("Cache delete failed for %s", keys)
            return 0

    def keys(self, pattern: str) -> list[str]:
        if self.client is None:
            return []
        try:
            return [k.decode() if isinstance(k, bytes) else str(k) for k in self.client.keys(pattern)]
        except Exception:
            logger.exception("Cache keys scan failed for %s", pattern)
            return []

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern``."""
        matched = self.keys(pattern)
        if not matched:
            return 0
        return self.delete(*matched)

    def push_capped(self, key: str, value: Any, limit: int, ttl: int) -> bool:
        """Push ``value`` to the head of a list, keep ``limit`` items and refresh its TTL."""
        if self.client is None:
            return False
        try:
            pipe = self.client.pipeline()
            pipe.lpush(key, json.dumps(value, default=str))
            pipe.ltrim(key, 0, limit - 1)
            pipe.expire(key, ttl)
            pipe.execute()
            return True
        except Exception:
            logger.exception("Cache list push failed for %s", key)
            return False

    def list_range(self, key: str, start: int = 0, end: int = -1) -> list[Any]:
        if self.client is None:
            return []
        try:
            raw_items = self.client.lrange(key, start, end)
        except Exception:
            logger.exception("Cache list read failed for %s", key)
            return []
        items = []
        for raw in raw_items:
            try:
                items.append(json.loads(raw))
            except (TypeError, ValueError):
                logger.warning("Skipping undecodable list item in %s", key)
        return items

    def incr(self, key: str, ttl: int | None = None) -> int | None:
        """Increment a counter, setting its expiry when given."""
        if self.client is None:
            return None
        try:
            value = int(self.client.incr(key))
            if ttl is not None:
                self.client.expire(key, ttl)
            return value
        except Exception:
            logger.exception("Cache incr failed for %s", key)
            return None

    def get_int(self, key: str) -> int:
        if self.client is None:
            return 0
        try:
            raw = self.client.get(key)
        except Exception:
            logger.exception("Cache get failed for %s", key)
            return 0
        if raw is None:
            return 0
        try:
            return int(raw)
        except (TypeError, ValueError):
            return 0


def get_redis_client() -> redis.Redis | None:
    """Get or create the shared redis client.

    Returns None when caching is disabled.
    """
    global _client

    if not settings.CACHE_ENABLED:
        return None

    if _client is None:
        _client = redis.Redis.from_url(
            settings.REDIS_URL,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )
    return _client


def get_cache() -> RedisCache:
    return RedisCache(get_redis_client())


def reset_client() -> None:
    """Reset the cached client. Used for testing."""
    global _client
    _client = None
