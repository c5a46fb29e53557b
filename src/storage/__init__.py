"""
Storage abstraction layer for VoiceCast services.

This package provides a pluggable key/value backend plus the quota-aware
PersistedStore that services read and write through:

- Memory (default for tests and single-process development)
- JSON file (single document on local disk)
- Redis (shared between processes)

Usage:
    from storage import get_storage_backend, PersistedStore

    store = PersistedStore(get_storage_backend())
    store.safe_set("messages", [])
"""

from typing import TYPE_CHECKING

from storage.base import (
    KeyValueStore,
    StorageConnectionError,
    StorageError,
    StorageQuotaError,
    StorageReadError,
    StorageWriteError,
)
from storage.json_file import JSONFileStore
from storage.memory import MemoryStore
from storage.persisted import CleanupPolicy, PersistedStore
from storage.redis_store import RedisStore

# config imports storage.base, so StorageConfig is resolved lazily
if TYPE_CHECKING:
    from config import StorageConfig

__all__ = [
    "CleanupPolicy",
    "JSONFileStore",
    "KeyValueStore",
    "MemoryStore",
    "PersistedStore",
    "RedisStore",
    "StorageConnectionError",
    "StorageError",
    "StorageQuotaError",
    "StorageReadError",
    "StorageWriteError",
    "get_storage_backend",
]


def get_storage_backend(config: "StorageConfig | None" = None) -> KeyValueStore:
    """
    Get the configured storage backend.

    Environment variables (read when no config is given):
        STORAGE_BACKEND: Backend type ("memory", "json", "redis")
        STORAGE_FILE: Path for JSON file storage
        STORAGE_REDIS_URL: Redis connection URL
        STORAGE_ITEM_LIMIT_BYTES / STORAGE_TOTAL_LIMIT_BYTES: quota ceilings

    Returns:
        Configured KeyValueStore instance
    """
    from config import StorageConfig

    config = config or StorageConfig.from_env()
    backend_type = config.backend.lower()
    limits = {
        "item_limit_bytes": config.item_limit_bytes,
        "total_limit_bytes": config.total_limit_bytes,
    }

    if backend_type == "memory":
        return MemoryStore(**limits)

    elif backend_type == "json":
        return JSONFileStore(config.file_path, **limits)

    elif backend_type == "redis":
        return RedisStore(
            url=config.redis_url,
            prefix=config.redis_prefix,
            timeout=config.redis_timeout,
            **limits,
        )

    else:
        raise StorageError(f"Unknown storage backend: {backend_type}")

