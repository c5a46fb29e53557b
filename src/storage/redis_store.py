"""
Redis storage backend.

Shares marketplace state between several application processes. Each storage
key maps to one Redis string under a configurable prefix.

Environment Variables:
    STORAGE_REDIS_URL=redis://localhost:6379/0
    STORAGE_REDIS_PREFIX=voicecast:
"""

import logging
from typing import Any

from storage.base import (
    DEFAULT_ITEM_LIMIT_BYTES,
    DEFAULT_TOTAL_LIMIT_BYTES,
    KeyValueStore,
    StorageConnectionError,
    StorageReadError,
    StorageWriteError,
)

logger = logging.getLogger(__name__)


class RedisStore(KeyValueStore):
    """Redis-backed key/value storage for multi-process deployments."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "voicecast:",
        timeout: float = 1.0,
        item_limit_bytes: int = DEFAULT_ITEM_LIMIT_BYTES,
        total_limit_bytes: int = DEFAULT_TOTAL_LIMIT_BYTES,
        client=None,
    ):
        super().__init__(item_limit_bytes, total_limit_bytes)
        self.url = url
        self.prefix = prefix
        self.timeout = timeout
        self._client = client

    def _get_client(self):
        """Get or create Redis client."""
        if self._client is None:
            import redis

            try:
                self._client = redis.from_url(
                    self.url,
                    socket_timeout=self.timeout,
                    socket_connect_timeout=self.timeout,
                    decode_responses=True,
                )
                self._client.ping()
                logger.info(f"Connected to Redis at {self.url}")
            except redis.RedisError as e:
                self._client = None
                raise StorageConnectionError(f"Redis connection failed: {e}") from e

        return self._client

    def _full_key(self, key: str) -> str:
        """Get full Redis key with prefix."""
        return f"{self.prefix}{key}"

    def get(self, key: str) -> str | None:
        import redis

        client = self._get_client()
        try:
            return client.get(self._full_key(key))
        except redis.RedisError as e:
            raise StorageReadError(f"Redis get failed for '{key}': {e}") from e

    def set(self, key: str, raw: str) -> None:
        import redis

        self._check_quota(key, raw)
        client = self._get_client()
        try:
            client.set(self._full_key(key), raw)
        except redis.RedisError as e:
            raise StorageWriteError(f"Redis set failed for '{key}': {e}") from e

    def delete(self, key: str) -> bool:
        import redis

        client = self._get_client()
        try:
            return bool(client.delete(self._full_key(key)))
        except redis.RedisError as e:
            raise StorageWriteError(f"Redis delete failed for '{key}': {e}") from e

    def keys(self) -> list[str]:
        import redis

        client = self._get_client()
        try:
            return [
                full_key[len(self.prefix):]
                for full_key in client.scan_iter(match=f"{self.prefix}*")
            ]
        except redis.RedisError as e:
            raise StorageReadError(f"Redis scan failed: {e}") from e

    def usage_bytes(self) -> int:
        import redis

        keys = self.keys()
        if not keys:
            return 0

        client = self._get_client()
        try:
            pipe = client.pipeline()
            for key in keys:
                pipe.strlen(self._full_key(key))
            return sum(pipe.execute())
        except redis.RedisError as e:
            raise StorageReadError(f"Redis usage scan failed: {e}") from e

    def is_available(self) -> bool:
        """Check if Redis is available."""
        import redis

        try:
            self._get_client().ping()
            return True
        except (redis.RedisError, StorageConnectionError):
            return False

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info.update({"url": self.url, "prefix": self.prefix})
        return info

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
