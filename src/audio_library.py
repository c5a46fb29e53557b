"""
VoiceCast - Audio Library

Demo reels and project deliveries stored inline as base64 ``data:`` URLs
under ``audio_files``. Limits keep the whole library inside the storage
ceilings:

- raw upload at most 2 MiB
- encoded data URL at most 1.5 MiB
- at most 3 demos per user
- at most 4 MiB for the serialized library
"""

import base64
import json
import logging
from enum import Enum
from typing import Any

from records import SCHEMA_VERSION, generate_id, utc_now_iso
from storage import PersistedStore
from storage.base import serialized_size

logger = logging.getLogger(__name__)

STORAGE_KEY = "audio_files"

MAX_RAW_BYTES = 2 * 1024 * 1024
MAX_ENCODED_BYTES = int(1.5 * 1024 * 1024)
MAX_DEMOS_PER_USER = 3
MAX_LIBRARY_BYTES = 4 * 1024 * 1024

DEFAULT_DURATION_SECONDS = 30


class AudioType(Enum):
    DEMO = "demo"
    PROJECT_DELIVERY = "project_delivery"
    REVISION = "revision"


class AudioValidationError(ValueError):
    """Raised when an upload is rejected before it is stored."""
    pass


class AudioStorageError(Exception):
    """Raised when a validated upload could not be persisted."""
    pass


def to_data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def _library_size(files: list[dict[str, Any]]) -> int:
    return serialized_size(json.dumps(files, separators=(",", ":")))


class AudioLibrary:
    """Upload, list and delete stored audio."""

    def __init__(self, store: PersistedStore):
        self.store = store

    def files(self, user_id: str | None = None, project_id: str | None = None) -> list[dict[str, Any]]:
        return [
            f for f in self.store.get(STORAGE_KEY, [])
            if (user_id is None or f.get("userId") == user_id)
            and (project_id is None or f.get("projectId") == project_id)
        ]

    def get(self, file_id: str) -> dict[str, Any] | None:
        for audio in self.files():
            if audio.get("id") == file_id:
                return audio
        return None

    def user_demos(self, user_id: str) -> list[dict[str, Any]]:
        return [f for f in self.files(user_id=user_id) if f.get("type") == AudioType.DEMO.value]

    def project_audio(self, project_id: str) -> list[dict[str, Any]]:
        return self.files(project_id=project_id)

    def upload(
        self,
        user_id: str,
        file_name: str,
        mime_type: str,
        data: bytes,
        type: str = "demo",
        project_id: str | None = None,
        duration: float | None = None,
    ) -> dict[str, Any]:
        """
        Validate and store an audio file.

        Raises:
            AudioValidationError: If the file breaks a limit
            AudioStorageError: If the library could not be written
        """
        try:
            audio_type = AudioType(type)
        except ValueError as e:
            raise AudioValidationError(f"Unknown audio type: {type!r}") from e

        if not (mime_type or "").startswith("audio/"):
            raise AudioValidationError("File must be an audio file")
        if len(data) > MAX_RAW_BYTES:
            raise AudioValidationError("File size must be less than 2MB")
        if audio_type == AudioType.DEMO and len(self.user_demos(user_id)) >= MAX_DEMOS_PER_USER:
            raise AudioValidationError(
                f"Maximum of {MAX_DEMOS_PER_USER} demo files allowed. "
                "Please delete some existing demos first."
            )

        data_url = to_data_url(mime_type, data)
        if len(data_url) > MAX_ENCODED_BYTES:
            raise AudioValidationError(
                "Audio file too large when encoded. Please use a smaller file or shorter duration."
            )

        audio = {
            "schemaVersion": SCHEMA_VERSION,
            "id": generate_id("audio"),
            "name": file_name,
            "url": data_url,
            "mimeType": mime_type,
            "duration": duration or DEFAULT_DURATION_SECONDS,
            "size": len(data),
            "uploadedAt": utc_now_iso(),
            "userId": user_id,
            "projectId": project_id,
            "type": audio_type.value,
        }

        files = self.store.get(STORAGE_KEY, []) + [audio]
        size = _library_size(files)
        if size > MAX_LIBRARY_BYTES:
            raise AudioValidationError(
                "Total storage limit reached. Please delete some existing audio files first."
            )

        item_limit = self.store.backend.item_limit_bytes
        if item_limit and size > item_limit:
            # Would only fit after the cleanup cascade wiped other data
            raise AudioStorageError(
                f"Audio library would be {size} bytes, over the {item_limit} byte storage ceiling"
            )

        if not self.store.safe_set(STORAGE_KEY, files):
            raise AudioStorageError(f"Failed to save audio file {file_name}")

        logger.info(f"Stored {audio_type.value} audio {audio['id']} for {user_id} ({len(data)} bytes)")
        return audio

    def delete(self, file_id: str, user_id: str) -> bool:
        """Delete a file owned by ``user_id``."""
        removed = False

        def apply(files: list) -> list:
            nonlocal removed
            kept = [f for f in files if not (f.get("id") == file_id and f.get("userId") == user_id)]
            removed = len(kept) != len(files)
            return kept

        committed, _ = self.store.update(STORAGE_KEY, apply, [])
        return committed and removed

    def clear_user_demos(self, user_id: str) -> int:
        removed = 0

        def apply(files: list) -> list:
            nonlocal removed
            kept = [
                f for f in files
                if not (f.get("userId") == user_id and f.get("type") == AudioType.DEMO.value)
            ]
            removed = len(files) - len(kept)
            return kept

        committed, _ = self.store.update(STORAGE_KEY, apply, [])
        return removed if committed else 0

    def storage_info(self) -> dict[str, int]:
        files = self.files()
        size = _library_size(files)
        return {
            "totalFiles": len(files),
            "totalSize": size,
            "demoCount": sum(1 for f in files if f.get("type") == AudioType.DEMO.value),
            "remainingBytes": max(0, MAX_LIBRARY_BYTES - size),
        }
