"""
Redis cache utility for entitlement status caching
"""
import redis
import json
import logging
from typing import Optional, Any
from uuid import UUID
from app.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """Redis-backed JSON cache; every operation is a no-op when Redis is unavailable"""

    ACCESS_STATUS_PREFIX = "access:status"

    def __init__(self, url: Optional[str] = None):
        url = settings.REDIS_URL if url is None else url
        self.redis_client = None

        if not url:
            logger.info("REDIS_URL not set. Caching disabled.")
            return

        try:
            self.redis_client = redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=2
            )
            self.redis_client.ping()
            logger.info("Redis connection established")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {str(e)}. Caching disabled.")
            self.redis_client = None

    def access_status_key(self, user_id: UUID) -> str:
        return f"{self.ACCESS_STATUS_PREFIX}:{user_id}"

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache

        Returns:
            Decoded JSON value or None on miss/error
        """
        if not self.redis_client:
            return None

        try:
            value = self.redis_client.get(key)
            if value:
                logger.debug(f"Cache hit: {key}")
                return json.loads(value)
            logger.debug(f"Cache miss: {key}")
            return None
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Cache get error: {str(e)}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time to live in seconds (default ACCESS_STATUS_CACHE_TTL)
        """
        if not self.redis_client:
            return False

        try:
            ttl = ttl or settings.ACCESS_STATUS_CACHE_TTL
            self.redis_client.setex(key, ttl, json.dumps(value))
            logger.debug(f"Cache set: {key} (TTL: {ttl}s)")
            return True
        except (redis.RedisError, TypeError) as e:
            logger.error(f"Cache set error: {str(e)}")
            return False

    def delete(self, key: str) -> bool:
        """Delete key from cache"""
        if not self.redis_client:
            return False

        try:
            self.redis_client.delete(key)
            logger.debug(f"Cache delete: {key}")
            return True
        except redis.RedisError as e:
            logger.error(f"Cache delete error: {str(e)}")
            return False

    def invalidate_access_status(self, user_id: UUID) -> bool:
        """Drop the cached entitlement status after usage changes"""
        return self.delete(self.access_status_key(user_id))


# Global instance
cache_service = CacheService()
