"""
VoiceCast - Talent Directory

Talent profiles (``talent_profiles``) and client job posts
(``client_posts``), with the search filters used by the browse pages.

Stored lists may contain the same id more than once after concurrent
writers; reads deduplicate by id and the last occurrence wins.
"""

import logging
import re
from typing import Any

from accounts import purge_user_data
from records import SCHEMA_VERSION, generate_id, utc_now_iso
from storage import PersistedStore, StorageWriteError

logger = logging.getLogger(__name__)

PROFILES_KEY = "talent_profiles"
POSTS_KEY = "client_posts"

POST_STATUSES = ("active", "paused", "completed", "cancelled")

_BUDGET_RE = re.compile(r"(\d+(?:\.\d+)?)")


def _dedupe(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    by_id: dict[Any, dict[str, Any]] = {}
    for record in records:
        # Re-insert so the last occurrence also takes the last position
        by_id.pop(record.get("id"), None)
        by_id[record.get("id")] = record
    return list(by_id.values())


def _contains(value: Any, needle: str) -> bool:
    return needle in str(value or "").lower()


def budget_range(budget: Any) -> tuple[float, float] | None:
    """Parse a budget such as ``"200-400"`` or ``500`` into (low, high)."""
    if isinstance(budget, (int, float)):
        return float(budget), float(budget)
    numbers = [float(n) for n in _BUDGET_RE.findall(str(budget or ""))]
    if not numbers:
        return None
    return min(numbers), max(numbers)


class TalentDirectory:
    """Talent profiles and client posts."""

    def __init__(self, store: PersistedStore):
        self.store = store

    def _save(self, key: str, mutator) -> list[dict[str, Any]]:
        committed, value = self.store.update(key, mutator, [])
        if not committed:
            raise StorageWriteError(f"Could not persist '{key}'")
        return value

    # ==================== Talent Profiles ====================

    def profiles(self) -> list[dict[str, Any]]:
        return _dedupe(self.store.get(PROFILES_KEY, []))

    def get_profile(self, profile_id: str) -> dict[str, Any] | None:
        for profile in self.profiles():
            if profile.get("id") == profile_id:
                return profile
        return None

    def upsert_profile(self, profile: dict[str, Any]) -> dict[str, Any]:
        """
        Create a profile or merge updates into an existing one.

        Raises:
            ValueError: If the profile has no id
        """
        profile_id = profile.get("id")
        if not profile_id:
            raise ValueError("Talent profile must have an id")

        now = utc_now_iso()
        result: dict[str, Any] = {}

        def apply(profiles: list) -> list:
            profiles = _dedupe(profiles)
            for existing in profiles:
                if existing.get("id") == profile_id:
                    existing.update(profile, updatedAt=now)
                    result.update(existing)
                    return profiles
            created = {
                "schemaVersion": SCHEMA_VERSION,
                "isActive": True,
                "specialties": [],
                "languages": [],
                "createdAt": now,
                **profile,
                "updatedAt": now,
            }
            result.update(created)
            return profiles + [created]

        self._save(PROFILES_KEY, apply)
        return result

    def delete_profile(self, profile_id: str) -> bool:
        """
        Delete a profile and purge everything involving the talent.

        Returns:
            False if the profile does not exist
        """
        profile = self.get_profile(profile_id)
        if profile is None:
            logger.warning(f"Talent profile {profile_id} not found")
            return False

        self._save(
            PROFILES_KEY,
            lambda profiles: [p for p in profiles if p.get("id") != profile_id],
        )
        purge_user_data(self.store, profile.get("userId") or profile_id)
        logger.info(f"Deleted talent profile {profile_id}")
        return True

    def suspend_profile(self, profile_id: str, reason: str) -> dict[str, Any] | None:
        if self.get_profile(profile_id) is None:
            return None
        return self.upsert_profile({"id": profile_id, "isActive": False, "suspensionReason": reason})

    def activate_profile(self, profile_id: str) -> dict[str, Any] | None:
        if self.get_profile(profile_id) is None:
            return None
        return self.upsert_profile({"id": profile_id, "isActive": True, "suspensionReason": None})

    def search_profiles(
        self,
        query: str = "",
        is_active: bool | None = None,
        specialties: list[str] | None = None,
        languages: list[str] | None = None,
        location: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Filter profiles.

        ``query`` is a case-insensitive substring match on name, title, bio,
        specialties and languages. ``specialties`` and ``languages`` match
        when the profile has any of the given values.
        """
        results = self.profiles()

        if query:
            needle = query.lower()
            results = [
                p for p in results
                if _contains(p.get("name"), needle)
                or _contains(p.get("title"), needle)
                or _contains(p.get("bio"), needle)
                or any(_contains(s, needle) for s in p.get("specialties", []))
                or any(_contains(lang, needle) for lang in p.get("languages", []))
            ]
        if is_active is not None:
            results = [p for p in results if p.get("isActive", True) == is_active]
        if specialties:
            results = [p for p in results if set(specialties) & set(p.get("specialties", []))]
        if languages:
            results = [p for p in results if set(languages) & set(p.get("languages", []))]
        if location:
            results = [p for p in results if _contains(p.get("location"), location.lower())]

        return results

    # ==================== Client Posts ====================

    def posts(self) -> list[dict[str, Any]]:
        return _dedupe(self.store.get(POSTS_KEY, []))

    def get_post(self, post_id: str) -> dict[str, Any] | None:
        for post in self.posts():
            if post.get("id") == post_id:
                return post
        return None

    def upsert_post(self, post: dict[str, Any]) -> dict[str, Any]:
        """
        Create a client post or merge updates into an existing one.

        Raises:
            ValueError: If the status is not a known post status
        """
        status = post.get("status")
        if status is not None and status not in POST_STATUSES:
            raise ValueError(f"Unknown post status: {status!r}")

        post_id = post.get("id") or generate_id("post")
        now = utc_now_iso()
        result: dict[str, Any] = {}

        def apply(posts: list) -> list:
            posts = _dedupe(posts)
            for existing in posts:
                if existing.get("id") == post_id:
                    existing.update(post, updatedAt=now)
                    result.update(existing)
                    return posts
            created = {
                "schemaVersion": SCHEMA_VERSION,
                "status": "active",
                "proposals": 0,
                "createdAt": now,
                **post,
                "id": post_id,
                "updatedAt": now,
            }
            result.update(created)
            return posts + [created]

        self._save(POSTS_KEY, apply)
        return result

    def delete_post(self, post_id: str) -> bool:
        removed = False

        def apply(posts: list) -> list:
            nonlocal removed
            kept = [p for p in posts if p.get("id") != post_id]
            removed = len(kept) != len(posts)
            return kept

        self._save(POSTS_KEY, apply)
        return removed

    def search_posts(
        self,
        query: str = "",
        status: str | None = None,
        category: str | None = None,
        budget_min: float | None = None,
        budget_max: float | None = None,
        project_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Filter client posts.

        A post matches a budget window when its budget range overlaps it.
        ``"all"`` disables the status, category and project type filters.
        """
        results = self.posts()

        if query:
            needle = query.lower()
            results = [
                p for p in results
                if _contains(p.get("title"), needle)
                or _contains(p.get("description"), needle)
                or _contains(p.get("clientName"), needle)
                or _contains(p.get("category"), needle)
            ]
        if status and status != "all":
            results = [p for p in results if p.get("status") == status]
        if category and category != "all":
            results = [p for p in results if p.get("category") == category]
        if project_type and project_type != "all":
            results = [p for p in results if p.get("projectType") == project_type]

        if budget_min is not None or budget_max is not None:
            low = budget_min if budget_min is not None else float("-inf")
            high = budget_max if budget_max is not None else float("inf")
            windowed = []
            for post in results:
                span = budget_range(post.get("budget"))
                if span and span[0] <= high and span[1] >= low:
                    windowed.append(post)
            results = windowed

        return results
