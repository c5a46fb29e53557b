"""
VoiceCast - Favorites and Project Shortlists

Clients keep a general list of favorite talent and per-project shortlists.
Adding a talent to either notifies the talent.

Storage layout:
    generalFavorites:  {clientId: [favorite, ...]}
    projectShortlists: {projectId: [shortlist entry, ...]}
    projects:          [{id, title, clientId, clientName, status}, ...]
"""

import logging
from typing import Any

from notifications import NotificationService, NotificationType
from records import utc_now_iso
from storage import PersistedStore

logger = logging.getLogger(__name__)

FAVORITES_KEY = "generalFavorites"
SHORTLISTS_KEY = "projectShortlists"
PROJECTS_KEY = "projects"


def _talent_summary(talent: dict[str, Any]) -> dict[str, Any]:
    """Fields copied from a talent profile into favorites and shortlists."""
    if not talent.get("id"):
        raise ValueError("Talent must have an id")
    return {
        "talentId": talent["id"],
        "talentName": talent.get("name", ""),
        "talentTitle": talent.get("title", ""),
        "talentAvatar": talent.get("avatar"),
    }


class FavoritesService:
    """General favorites, project shortlists and per-talent stats."""

    def __init__(self, store: PersistedStore, notifications: NotificationService | None = None):
        self.store = store
        self.notifications = notifications or NotificationService(store)

    # ==================== General Favorites ====================

    def favorites_for(self, client_id: str) -> list[dict[str, Any]]:
        return self.store.get(FAVORITES_KEY, {}).get(client_id, [])

    def is_favorite(self, client_id: str, talent_id: str) -> bool:
        return any(f["talentId"] == talent_id for f in self.favorites_for(client_id))

    def add_favorite(self, client_id: str, client_name: str, talent: dict[str, Any]) -> bool:
        """
        Add a talent to a client's favorites.

        Returns:
            True if added, False if already a favorite or not persisted
        """
        entry = {**_talent_summary(talent), "savedAt": utc_now_iso()}
        added = False

        def apply(by_client: dict) -> dict:
            nonlocal added
            favorites = by_client.setdefault(client_id, [])
            if any(f["talentId"] == entry["talentId"] for f in favorites):
                return by_client
            favorites.append(entry)
            added = True
            return by_client

        committed, _ = self.store.update(FAVORITES_KEY, apply, {})
        if not (committed and added):
            return False

        self.notifications.create(
            talent_id=entry["talentId"],
            type=NotificationType.FAVORITE,
            client_id=client_id,
            client_name=client_name,
        )
        return True

    def remove_favorite(self, client_id: str, talent_id: str) -> bool:
        removed = False

        def apply(by_client: dict) -> dict:
            nonlocal removed
            favorites = by_client.get(client_id, [])
            kept = [f for f in favorites if f["talentId"] != talent_id]
            removed = len(kept) != len(favorites)
            if removed:
                by_client[client_id] = kept
            return by_client

        committed, _ = self.store.update(FAVORITES_KEY, apply, {})
        return committed and removed

    def favorite_count(self, talent_id: str) -> int:
        """How many clients have favorited a talent."""
        return sum(
            1
            for favorites in self.store.get(FAVORITES_KEY, {}).values()
            if any(f["talentId"] == talent_id for f in favorites)
        )

    # ==================== Project Shortlists ====================

    def _project(self, project_id: str) -> dict[str, Any] | None:
        for project in self.store.get(PROJECTS_KEY, []):
            if project.get("id") == project_id:
                return project
        return None

    def shortlist_for(self, project_id: str) -> list[dict[str, Any]]:
        return self.store.get(SHORTLISTS_KEY, {}).get(project_id, [])

    def add_to_shortlist(self, project_id: str, talent: dict[str, Any]) -> bool:
        """
        Shortlist a talent for a project and notify them.

        Raises:
            KeyError: If the project does not exist
        """
        project = self._project(project_id)
        if project is None:
            raise KeyError(f"Project {project_id} not found")

        entry = {
            **_talent_summary(talent),
            "shortlistedAt": utc_now_iso(),
            "status": "shortlisted",
        }
        added = False

        def apply(by_project: dict) -> dict:
            nonlocal added
            entries = by_project.setdefault(project_id, [])
            if any(e["talentId"] == entry["talentId"] for e in entries):
                return by_project
            entries.append(entry)
            added = True
            return by_project

        committed, _ = self.store.update(SHORTLISTS_KEY, apply, {})
        if not (committed and added):
            return False

        self.notifications.create(
            talent_id=entry["talentId"],
            type=NotificationType.SHORTLIST,
            client_id=project.get("clientId", ""),
            client_name=project.get("clientName", ""),
            project_id=project_id,
            project_title=project.get("title"),
        )
        return True

    def remove_from_shortlist(self, project_id: str, talent_id: str) -> bool:
        removed = False

        def apply(by_project: dict) -> dict:
            nonlocal removed
            entries = by_project.get(project_id, [])
            kept = [e for e in entries if e["talentId"] != talent_id]
            removed = len(kept) != len(entries)
            if removed:
                by_project[project_id] = kept
            return by_project

        committed, _ = self.store.update(SHORTLISTS_KEY, apply, {})
        return committed and removed

    def shortlisting_projects(self, talent_id: str) -> list[dict[str, Any]]:
        """Open projects that have shortlisted a talent."""
        shortlists = self.store.get(SHORTLISTS_KEY, {})
        return [
            project
            for project in self.store.get(PROJECTS_KEY, [])
            if project.get("status") == "open"
            and any(e["talentId"] == talent_id for e in shortlists.get(project.get("id"), []))
        ]

    def talent_stats(self, talent_id: str) -> dict[str, int]:
        return {
            "favoritesCount": self.favorite_count(talent_id),
            "shortlistsCount": len(self.shortlisting_projects(talent_id)),
            "unreadNotifications": self.notifications.unread_count(talent_id),
        }
