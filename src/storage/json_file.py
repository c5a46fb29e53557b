"""
JSON file storage backend.

Persists every key in a single JSON document on local disk, mirroring the
layout of the marketplace's original browser storage: one object whose
properties are the storage keys and whose values are serialized strings.
"""

import json
import os
import shutil
import threading
from datetime import datetime
from typing import Any

from storage.base import (
    DEFAULT_ITEM_LIMIT_BYTES,
    DEFAULT_TOTAL_LIMIT_BYTES,
    KeyValueStore,
    StorageError,
    StorageReadError,
    StorageWriteError,
    serialized_size,
)


class JSONFileStore(KeyValueStore):
    """
    JSON file storage backend.

    The whole document is re-read on each operation so that several
    processes pointed at the same file see each other's writes. Writes are
    atomic (temp file then rename) but read-modify-write cycles across
    processes are not coordinated.
    """

    def __init__(
        self,
        file_path: str = "voicecast_data.json",
        item_limit_bytes: int = DEFAULT_ITEM_LIMIT_BYTES,
        total_limit_bytes: int = DEFAULT_TOTAL_LIMIT_BYTES,
    ):
        """
        Initialize JSON file storage.

        Args:
            file_path: Path to the JSON file
            item_limit_bytes: Per-value ceiling
            total_limit_bytes: Aggregate ceiling
        """
        super().__init__(item_limit_bytes, total_limit_bytes)
        self.file_path = file_path
        self._lock = threading.RLock()

    def _load(self) -> dict[str, str]:
        try:
            if not os.path.exists(self.file_path):
                return {}

            with open(self.file_path, "r", encoding="utf-8") as f:
                raw_data = f.read()

            if not raw_data.strip():
                return {}

            document = json.loads(raw_data)
            if not isinstance(document, dict):
                raise StorageReadError(
                    f"Expected a JSON object in {self.file_path}, got {type(document).__name__}"
                )
            return document

        except FileNotFoundError:
            return {}
        except PermissionError as e:
            raise StorageReadError(f"Permission denied: {self.file_path}") from e
        except json.JSONDecodeError as e:
            raise StorageReadError(f"Invalid JSON format: {e}") from e

    def _save(self, document: dict[str, str]) -> None:
        try:
            data = json.dumps(document, ensure_ascii=False)

            # Write to file atomically (write to temp, then rename)
            temp_path = f"{self.file_path}.tmp"
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(data)

            os.replace(temp_path, self.file_path)

        except PermissionError as e:
            raise StorageWriteError(f"Permission denied: {self.file_path}") from e
        except OSError as e:
            raise StorageWriteError(f"OS error: {e}") from e

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, raw: str) -> None:
        with self._lock:
            self._check_quota(key, raw)
            document = self._load()
            document[key] = raw
            self._save(document)

    def delete(self, key: str) -> bool:
        with self._lock:
            document = self._load()
            if key not in document:
                return False
            del document[key]
            self._save(document)
            return True

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._load().keys())

    def clear(self) -> None:
        with self._lock:
            self._save({})

    def usage_bytes(self) -> int:
        with self._lock:
            return sum(serialized_size(raw) for raw in self._load().values())

    def is_available(self) -> bool:
        """
        Check if file storage is available.

        Returns:
            True if the file path is writable
        """
        directory = os.path.dirname(self.file_path) or "."
        if not os.path.exists(directory):
            return False
        return os.access(directory, os.W_OK)

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        info.update({
            "file_path": self.file_path,
            "file_exists": os.path.exists(self.file_path),
        })

        if os.path.exists(self.file_path):
            try:
                stat = os.stat(self.file_path)
                info["file_size_bytes"] = stat.st_size
                info["last_modified"] = stat.st_mtime
            except OSError:
                pass

        return info

    def backup(self, backup_path: str | None = None) -> str:
        """
        Create a backup of the storage file.

        Args:
            backup_path: Path for backup file (default: adds timestamped .backup suffix)

        Returns:
            Path to the backup file

        Raises:
            StorageError: If backup fails
        """
        if backup_path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = f"{self.file_path}.{timestamp}.backup"

        try:
            with self._lock:
                if not os.path.exists(self.file_path):
                    raise StorageError("No file to backup")
                shutil.copy2(self.file_path, backup_path)
                return backup_path
        except OSError as e:
            raise StorageError(f"Backup failed: {e}") from e
