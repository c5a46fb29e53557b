"""
Abstract base class for key/value storage backends.

This module defines the interface that all storage backends must implement.
Values are stored as serialized JSON strings; quota enforcement (a per-item
ceiling and an aggregate ceiling) is shared by every backend.
"""

from abc import ABC, abstractmethod
from typing import Any

# Observed browser storage limits the marketplace was built around
DEFAULT_ITEM_LIMIT_BYTES = 1_572_864  # 1.5 MiB
DEFAULT_TOTAL_LIMIT_BYTES = 4_194_304  # 4 MiB


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageConnectionError(StorageError):
    """Raised when connection to storage backend fails."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


class StorageQuotaError(StorageWriteError):
    """Raised when a write would exceed the item or aggregate ceiling."""

    def __init__(self, message: str, key: str, size: int, limit: int):
        super().__init__(message)
        self.key = key
        self.size = size
        self.limit = limit


def serialized_size(raw: str) -> int:
    """Size in bytes of a serialized value as it is counted against quota."""
    return len(raw.encode("utf-8"))


class KeyValueStore(ABC):
    """
    Abstract base class for key/value storage backends.

    All storage backends must implement these methods to provide
    a consistent interface for marketplace persistence.
    """

    def __init__(
        self,
        item_limit_bytes: int = DEFAULT_ITEM_LIMIT_BYTES,
        total_limit_bytes: int = DEFAULT_TOTAL_LIMIT_BYTES,
    ):
        self.item_limit_bytes = item_limit_bytes
        self.total_limit_bytes = total_limit_bytes

    @abstractmethod
    def get(self, key: str) -> str | None:
        """
        Read the raw serialized value for a key.

        Returns:
            The stored string, or None if the key is absent.

        Raises:
            StorageReadError: If reading fails
        """
        pass

    @abstractmethod
    def set(self, key: str, raw: str) -> None:
        """
        Write a raw serialized value.

        Args:
            key: Storage key
            raw: Serialized JSON string

        Raises:
            StorageQuotaError: If the value exceeds a ceiling
            StorageWriteError: If writing fails
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed
        """
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        """List all stored keys."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the storage backend is available and ready.

        Returns:
            True if storage is accessible, False otherwise
        """
        pass

    def clear(self) -> None:
        """Remove every key."""
        for key in self.keys():
            self.delete(key)

    def usage_bytes(self) -> int:
        """Aggregate serialized size of all stored values."""
        total = 0
        for key in self.keys():
            raw = self.get(key)
            if raw is not None:
                total += serialized_size(raw)
        return total

    def _check_quota(self, key: str, raw: str) -> None:
        """
        Reject a write that would exceed the item or aggregate ceiling.

        The existing value under ``key`` is not counted, since it is replaced.

        Raises:
            StorageQuotaError: If either ceiling would be exceeded
        """
        size = serialized_size(raw)
        if self.item_limit_bytes and size > self.item_limit_bytes:
            raise StorageQuotaError(
                f"Value for '{key}' is {size} bytes, item limit is {self.item_limit_bytes}",
                key=key,
                size=size,
                limit=self.item_limit_bytes,
            )

        if self.total_limit_bytes:
            existing = self.get(key)
            existing_size = serialized_size(existing) if existing is not None else 0
            projected = self.usage_bytes() - existing_size + size
            if projected > self.total_limit_bytes:
                raise StorageQuotaError(
                    f"Writing '{key}' would use {projected} bytes, "
                    f"total limit is {self.total_limit_bytes}",
                    key=key,
                    size=projected,
                    limit=self.total_limit_bytes,
                )

    def get_info(self) -> dict[str, Any]:
        """
        Get information about the storage backend.

        Returns:
            Dictionary with backend type, status, and quota usage
        """
        available = self.is_available()
        info: dict[str, Any] = {
            "backend_type": self.__class__.__name__,
            "available": available,
            "item_limit_bytes": self.item_limit_bytes,
            "total_limit_bytes": self.total_limit_bytes,
        }
        if available:
            info["key_count"] = len(self.keys())
            info["usage_bytes"] = self.usage_bytes()
        return info

    def close(self) -> None:
        """
        Close the storage connection and release resources.

        Default implementation does nothing - backends with connections
        should override this.
        """
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes connection."""
        self.close()
        return False
