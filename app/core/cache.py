import json
import logging
from contextlib import contextmanager
from typing import Any, Optional

import redis

from app.core.config import settings
from app.core.exceptions import ExternalStoreError, LockTimeoutError

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis_client():
    global _redis_client
    if _redis_client is None:
        # Use simple redis client (synchronous) for lightweight operations
        _redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


def set_redis_client(client) -> None:
    """Swap the shared client (used by tests and alternate deployments)."""
    global _redis_client
    _redis_client = client


class CacheService:
    """JSON cache helpers and short-lived locks on top of redis."""

    def __init__(self, client=None):
        self.client = client if client is not None else get_redis_client()

    def set(self, key: str, value: Any, ttl: Optional[int] = None, keep_ttl: bool = False) -> None:
        payload = json.dumps(value, default=str)
        try:
            if ttl and ttl > 0:
                self.client.set(key, payload, ex=int(ttl))
            elif keep_ttl:
                self.client.set(key, payload, keepttl=True)
            else:
                self.client.set(key, payload)
        except redis.RedisError as e:
            raise ExternalStoreError(f"Failed to write cache key {key}: {e}")

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            raise ExternalStoreError(f"Failed to read cache key {key}: {e}")
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding malformed cache entry {key}")
            return None

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return self.client.delete(*keys)
        except redis.RedisError as e:
            raise ExternalStoreError(f"Failed to delete cache keys {keys}: {e}")

    def keys(self, pattern: str) -> list:
        try:
            return [
                k.decode("utf-8") if isinstance(k, bytes) else k
                for k in self.client.scan_iter(match=pattern)
            ]
        except redis.RedisError as e:
            raise ExternalStoreError(f"Failed to scan pattern {pattern}: {e}")

    def delete_pattern(self, pattern: str) -> int:
        matched = self.keys(pattern)
        if not matched:
            return 0
        deleted = self.delete(*matched)
        logger.debug(f"Deleted {deleted} cache keys matching {pattern}")
        return deleted

    def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(self.client.expire(key, int(ttl)))
        except redis.RedisError as e:
            raise ExternalStoreError(f"Failed to set expiry on {key}: {e}")

    def expire_pattern(self, pattern: str, ttl: int) -> int:
        return sum(1 for key in self.keys(pattern) if self.expire(key, ttl))

    @contextmanager
    def lock(self, name: str, ttl: float = 5, wait: float = 2.0):
        """
        Hold the redis lock ``name`` for at most ``ttl`` seconds, waiting up
        to ``wait`` seconds for a current holder to let go.

        Raises LockTimeoutError when the lock stays taken.
        """
        lock = self.client.lock(name, timeout=ttl, blocking_timeout=wait)
        try:
            acquired = lock.acquire()
        except redis.RedisError as e:
            raise ExternalStoreError(f"Failed to acquire lock {name}: {e}")
        if not acquired:
            raise LockTimeoutError(f"Timed out waiting for lock {name}")
        try:
            yield lock
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError as e:
                # Expired and possibly taken by someone else; nothing to release
                logger.warning(f"Lock {name} was lost before release: {e}")
            except redis.RedisError as e:
                logger.error(f"Failed to release lock {name}: {e}")
