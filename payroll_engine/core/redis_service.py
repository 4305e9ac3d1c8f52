import redis
import json
import hashlib
import time
from typing import Dict, Optional, Any
import logging
from payroll_engine.core.config import settings

logger = logging.getLogger(__name__)

class RedisCacheService:
    """Redis-based cache for compensation previews.

    Previews are pure functions of their inputs, so a cached entry never goes
    stale; the TTL only bounds memory. When Redis is disabled or unreachable
    every call is a miss and writes are dropped.
    """

    def __init__(self, redis_url: str = None, enabled: bool = None):
        self.redis_url = redis_url or settings.redis_url
        self.cache_ttl = settings.preview_cache_ttl
        self.redis_client = None

        if enabled is None:
            enabled = settings.enable_redis_cache
        if not enabled:
            logger.debug("Redis preview cache disabled by configuration")
            return

        try:
            client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_timeout=settings.redis_socket_timeout,
                socket_connect_timeout=settings.redis_socket_connect_timeout
            )

            # Test connection
            client.ping()
            self.redis_client = client
            logger.info("Redis connection established successfully")

        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            self.redis_client = None

    def is_available(self) -> bool:
        """Check if Redis is available"""
        return self.redis_client is not None

    @staticmethod
    def preview_key(payload: Dict[str, Any]) -> str:
        """Stable cache key for a preview request."""
        encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return f"compensation:preview:{hashlib.sha256(encoded).hexdigest()}"

    def get_preview(self, key: str) -> Optional[Dict[str, Any]]:
        if not self.is_available():
            return None

        try:
            data = self.redis_client.get(key)
            if data is None:
                logger.debug(f"REDIS CACHE - Preview miss: {key}")
                return None
            logger.debug(f"REDIS CACHE - Preview hit: {key}")
            return json.loads(data)
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"REDIS CACHE - Error reading preview {key}: {str(e)}")
            return None

    def cache_preview(self, key: str, value: Dict[str, Any], ttl: int = None) -> bool:
        if not self.is_available():
            return False

        operation_start = time.time()
        try:
            self.redis_client.setex(key, ttl or self.cache_ttl, json.dumps(value, default=str))
            logger.debug(f"REDIS CACHE - Cached preview {key} in {time.time() - operation_start:.3f}s")
            return True
        except redis.RedisError as e:
            logger.warning(f"REDIS CACHE - Error caching preview {key}: {str(e)}")
            return False

    def health_check(self) -> bool:
        """Ping Redis, reporting False when disabled or down."""
        if not self.is_available():
            return False
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {str(e)}")
            return False


_cache_service: Optional[RedisCacheService] = None


def get_cache_service() -> RedisCacheService:
    """Process-wide cache service, created on first use."""
    global _cache_service
    if _cache_service is None:
        _cache_service = RedisCacheService()
    return _cache_service
