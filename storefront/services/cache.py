"""
Redis cache layer for hot catalog reads (product detail, category listing).

Redis is ONLY a cache, never the source of truth.
The relational store is always authoritative.

Cache keys follow a clear naming pattern:
- prod:{product_id}   individual product data (TTL from config, default 5 min)
- categories:all      active category listing (TTL from config, default 10 min)

When no REDIS_URL is configured the client is disabled and every read is a
miss, so callers never need to branch on cache availability.
"""

import json
from typing import Any, Optional

import redis

from storefront.utils.logger import get_logger

logger = get_logger("cache")


class CacheClient:
    """Redis cache client with namespaced keys and per-kind TTLs."""

    def __init__(
        self,
        url: str = "",
        namespace: str = "store",
        ttl_product: int = 300,
        ttl_categories: int = 600,
        metrics=None,
    ):
        """
        Args:
            url: redis:// or rediss:// URL; empty disables the cache.
            namespace: Key prefix.
            metrics: Optional MetricsCollector for hit/miss counting.
        """
        self.namespace = namespace
        self.ttl_product = ttl_product
        self.ttl_categories = ttl_categories
        self.metrics = metrics
        self.client: Optional[redis.Redis] = None
        if url:
            self.client = redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            logger.info("cache: redis client configured namespace=%s", namespace)
        else:
            logger.info("cache: REDIS_URL not set, caching disabled")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _key(self, key: str) -> str:
        """Prefix key with namespace."""
        return f"{self.namespace}:{key}"

    def ping(self) -> bool:
        """Check if Redis is reachable."""
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    def get_json(self, key: str) -> Optional[Any]:
        """Read a JSON value. Returns None on miss, when disabled, or on Redis errors."""
        if self.client is None:
            return None
        full_key = self._key(key)
        try:
            cached = self.client.get(full_key)
        except redis.RedisError as e:
            logger.warning("cache: read error key=%s error=%s", full_key, e)
            return None
        if cached is None:
            if self.metrics:
                self.metrics.record_cache_miss()
            return None
        if self.metrics:
            self.metrics.record_cache_hit()
        return json.loads(cached)

    def set_json(self, key: str, value: Any, ttl: int) -> bool:
        if self.client is None:
            return False
        full_key = self._key(key)
        try:
            self.client.setex(full_key, ttl, json.dumps(value, default=str))
            return True
        except redis.RedisError as e:
            logger.warning("cache: write error key=%s error=%s", full_key, e)
            return False

    def delete(self, *keys: str) -> None:
        if self.client is None or not keys:
            return
        try:
            self.client.delete(*(self._key(k) for k in keys))
        except redis.RedisError as e:
            logger.warning("cache: delete error keys=%s error=%s", keys, e)

    # Product / category helpers

    def get_product(self, product_id: int) -> Optional[dict]:
        return self.get_json(f"prod:{product_id}")

    def set_product(self, product_id: int, data: dict) -> bool:
        return self.set_json(f"prod:{product_id}", data, self.ttl_product)

    def invalidate_product(self, product_id: int) -> None:
        self.delete(f"prod:{product_id}")

    def get_categories(self) -> Optional[list]:
        return self.get_json("categories:all")

    def set_categories(self, data: list) -> bool:
        return self.set_json("categories:all", data, self.ttl_categories)

    def invalidate_categories(self) -> None:
        self.delete("categories:all")

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
