"""
Redis-backed read-through cache.

The cache is never a source of truth. Every operation degrades to a no-op
when the client is missing, unreachable, or slow: reads become misses and
writes/deletes are skipped. No request may fail because of the cache.
"""
import json
import logging
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)

# TTLs in seconds
PRODUCTS_TTL = 3600
SALES_TTL = 3600
CART_TTL = 1800
USER_AUTH_TTL = 300

PRODUCTS_PREFIX = "products:"
SALES_PREFIX = "sales:"
FEATURED_KEY = "products:featured"
ALL_SALES_KEY = "sales:all"
ACTIVE_SALES_KEY = "sales:active"

_CACHE_ERRORS = (redis.RedisError, OSError, ValueError, TypeError)


def cart_key(user_id: str) -> str:
    return f"cart:{user_id}"


def products_query_key(query: dict, sort: Optional[str]) -> str:
    return f"{PRODUCTS_PREFIX}{json.dumps(query, sort_keys=True, default=str)}:{sort or 'default'}"


def connect(url: Optional[str], timeout: float = 0.5) -> Optional[redis.Redis]:
    """Build a client for REDIS_URL, or None when no cache is configured."""
    if not url:
        logger.info("REDIS_URL not set, running without cache")
        return None
    return redis.Redis.from_url(
        url,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        decode_responses=True,
    )


class Cache:
    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Optional[Any]:
        if self.client is None:
            return None
        try:
            raw = self.client.get(key)
            return json.loads(raw) if raw else None
        except _CACHE_ERRORS as e:
            logger.warning("cache get %s failed: %s", key, e)
            return None

    def set(self, key: str, value: Any, ttl: int) -> None:
        if self.client is None:
            return
        try:
            self.client.setex(key, ttl, json.dumps(value, default=str))
        except _CACHE_ERRORS as e:
            logger.warning("cache set %s failed: %s", key, e)

    def delete(self, *keys: str) -> None:
        if self.client is None or not keys:
            return
        try:
            self.client.delete(*keys)
        except _CACHE_ERRORS as e:
            logger.warning("cache delete %s failed: %s", keys, e)

    def scan_delete(self, prefix: str) -> int:
        """Delete every key starting with prefix using SCAN (never KEYS)."""
        if self.client is None:
            return 0
        deleted = 0
        batch = []
        try:
            for key in self.client.scan_iter(match=f"{prefix}*", count=100):
                batch.append(key)
                if len(batch) >= 100:
                    deleted += self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += self.client.delete(*batch)
        except _CACHE_ERRORS as e:
            logger.warning("cache prefix invalidation %s failed: %s", prefix, e)
        return deleted

    def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except _CACHE_ERRORS:
            return False
