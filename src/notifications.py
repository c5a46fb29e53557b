"""
VoiceCast - Talent Notifications

Tells talent when a client favorites them, shortlists them for a project or
sends them a message. Notifications are grouped per talent under the
``talentNotifications`` key and are only ever marked read, never un-read.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from records import SCHEMA_VERSION, RecordValidationError, generate_id, require_fields, utc_now_iso
from storage import PersistedStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "talentNotifications"


class NotificationType(Enum):
    """What a client did to trigger the notification."""
    FAVORITE = "favorite"
    SHORTLIST = "shortlist"
    MESSAGE = "message"


@dataclass
class TalentNotification:
    """A single notification addressed to a talent."""
    id: str
    talent_id: str
    type: NotificationType
    client_id: str
    client_name: str
    created_at: str
    read: bool = False
    project_id: str | None = None
    project_title: str | None = None
    message_id: str | None = None
    message_subject: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "id": self.id,
            "talentId": self.talent_id,
            "type": self.type.value,
            "clientId": self.client_id,
            "clientName": self.client_name,
            "projectId": self.project_id,
            "projectTitle": self.project_title,
            "messageId": self.message_id,
            "messageSubject": self.message_subject,
            "createdAt": self.created_at,
            "read": self.read,
        }

    @classmethod
    def from_dict(cls, data: Any, talent_id: str) -> "TalentNotification":
        require_fields("notification", data, ("id", "type", "createdAt"))
        try:
            kind = NotificationType(data["type"])
        except ValueError:
            raise RecordValidationError("notification", data["id"], f"unknown type {data['type']!r}")
        return cls(
            id=data["id"],
            talent_id=data.get("talentId", talent_id),
            type=kind,
            client_id=data.get("clientId", ""),
            client_name=data.get("clientName", ""),
            created_at=data["createdAt"],
            read=bool(data.get("read", False)),
            project_id=data.get("projectId"),
            project_title=data.get("projectTitle"),
            message_id=data.get("messageId"),
            message_subject=data.get("messageSubject"),
        )


class NotificationService:
    """Create, list and acknowledge talent notifications."""

    def __init__(self, store: PersistedStore):
        self.store = store

    def create(
        self,
        talent_id: str,
        type: NotificationType,
        client_id: str,
        client_name: str,
        project_id: str | None = None,
        project_title: str | None = None,
        message_id: str | None = None,
        message_subject: str | None = None,
    ) -> TalentNotification | None:
        """
        Record a notification for a talent.

        Returns:
            The notification, or None if it could not be stored
        """
        if not isinstance(type, NotificationType):
            raise ValueError(f"Unknown notification type: {type!r}")

        notification = TalentNotification(
            id=generate_id("notif"),
            talent_id=talent_id,
            type=type,
            client_id=client_id,
            client_name=client_name,
            created_at=utc_now_iso(),
            project_id=project_id,
            project_title=project_title,
            message_id=message_id,
            message_subject=message_subject,
        )

        def append(by_talent: dict) -> dict:
            by_talent.setdefault(talent_id, []).append(notification.to_dict())
            return by_talent

        committed, _ = self.store.update(STORAGE_KEY, append, {})
        if not committed:
            logger.error(f"Dropped {type.value} notification for talent {talent_id}")
            return None
        return notification

    def for_talent(self, talent_id: str) -> list[TalentNotification]:
        """Notifications for a talent, newest first."""
        records = self.store.get(STORAGE_KEY, {}).get(talent_id, [])
        notifications = [TalentNotification.from_dict(r, talent_id) for r in records]
        return sorted(notifications, key=lambda n: n.created_at, reverse=True)

    def unread_count(self, talent_id: str) -> int:
        return sum(1 for n in self.for_talent(talent_id) if not n.read)

    def mark_as_read(self, talent_id: str, notification_ids: list[str]) -> int:
        """
        Mark the given notifications read.

        Idempotent; notifications not listed are untouched.

        Returns:
            Number of notifications that changed from unread to read
        """
        wanted = set(notification_ids)
        changed = 0

        def apply(by_talent: dict) -> dict:
            nonlocal changed
            for record in by_talent.get(talent_id, []):
                if record.get("id") in wanted and not record.get("read"):
                    record["read"] = True
                    changed += 1
            return by_talent

        committed, _ = self.store.update(STORAGE_KEY, apply, {})
        if not committed:
            logger.error(f"Could not persist read state for talent {talent_id}")
            return 0
        return changed
