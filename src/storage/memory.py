"""
In-memory storage backend.

This backend keeps serialized values in a dict, useful for:
- Unit testing
- Development
- Single-process deployments that accept losing state on restart
"""

import threading
from typing import Any

from storage.base import (
    DEFAULT_ITEM_LIMIT_BYTES,
    DEFAULT_TOTAL_LIMIT_BYTES,
    KeyValueStore,
    serialized_size,
)


class MemoryStore(KeyValueStore):
    """
    In-memory storage backend.

    All data is lost when the process exits. Thread-safe operations.
    """

    def __init__(
        self,
        item_limit_bytes: int = DEFAULT_ITEM_LIMIT_BYTES,
        total_limit_bytes: int = DEFAULT_TOTAL_LIMIT_BYTES,
    ):
        super().__init__(item_limit_bytes, total_limit_bytes)
        self._data: dict[str, str] = {}
        # RLock: set() re-enters through _check_quota -> usage_bytes()
        self._lock = threading.RLock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, raw: str) -> None:
        with self._lock:
            self._check_quota(key, raw)
            self._data[key] = raw

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data.keys())

    def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._data.clear()

    def usage_bytes(self) -> int:
        with self._lock:
            return sum(serialized_size(raw) for raw in self._data.values())

    def is_available(self) -> bool:
        """Memory storage is always available."""
        return True

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        with self._lock:
            info = super().get_info()
            info["has_data"] = bool(self._data)
        return info
