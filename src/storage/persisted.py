"""
Quota-aware persisted store.

Typed JSON layer over a KeyValueStore that every marketplace service reads
and writes through. When a write hits a storage ceiling, ``safe_set`` runs a
two-tier cleanup cascade driven by a CleanupPolicy:

1. aggressive: truncate large collections to their most recent entries and
   drop transient caches
2. emergency: delete everything except identity keys, then re-create the
   core collections empty

Usage:
    from storage import MemoryStore, PersistedStore

    store = PersistedStore(MemoryStore())
    store.safe_set("messages", [...])
    messages = store.get("messages", [])
"""

import copy
import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from monitoring import metrics
from storage.base import KeyValueStore, StorageError, StorageQuotaError

logger = logging.getLogger(__name__)


@dataclass
class CleanupPolicy:
    """
    Eviction policy for the cleanup cascade.

    ``collection_budgets`` maps a key to the number of entries kept by
    aggressive cleanup. List values keep their last N entries; dict values
    whose members are lists keep the last N entries per member. Keys listed
    in ``newest_first`` are stored newest-first, so their first N are kept.
    """

    collection_budgets: dict[str, int] = field(default_factory=lambda: {
        "messages": 20,
        "sentMessages": 20,
        "conversations": 10,
        "talentNotifications": 10,
    })
    newest_first: frozenset[str] = frozenset({"admin_actions"})
    transient_keys: tuple[str, ...] = (
        "searchResults",
        "cachedTalents",
        "recentSearches",
        "browsingSessions",
    )
    essential_keys: tuple[str, ...] = (
        "userId",
        "userName",
        "userType",
        "auth_token",
        "authToken",
    )
    core_collections: dict[str, Any] = field(default_factory=lambda: {
        "messages": [],
        "sentMessages": [],
        "conversations": [],
        "projects": [],
        "userFavorites": [],
        "talentNotifications": {},
        "generalFavorites": {},
        "projectShortlists": {},
    })

    def truncate(self, key: str, value: Any) -> Any:
        """Apply the budget for ``key`` to a collection value."""
        budget = self.collection_budgets.get(key)
        if budget is None:
            return value

        if isinstance(value, list):
            return self._trim(key, value, budget)

        if isinstance(value, dict):
            return {
                member: self._trim(key, items, budget) if isinstance(items, list) else items
                for member, items in value.items()
            }

        return value

    def _trim(self, key: str, items: list, budget: int) -> list:
        if budget <= 0:
            return []
        if key in self.newest_first:
            return items[:budget]
        return items[-budget:]


class PersistedStore:
    """
    JSON value store with graceful degradation under capacity pressure.

    Read-modify-write cycles are serialized within a process by a re-entrant
    lock. Separate processes sharing one backend can still lose updates.
    """

    def __init__(self, backend: KeyValueStore, policy: CleanupPolicy | None = None):
        self.backend = backend
        self.policy = policy or CleanupPolicy()
        self._lock = threading.RLock()

    # ==================== Reads ====================

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read and decode a value.

        Returns a copy of ``default`` when the key is absent or its stored
        value is not valid JSON.
        """
        raw = self.backend.get(key)
        if raw is None:
            return copy.deepcopy(default)
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding corrupt value stored under '{key}'")
            return copy.deepcopy(default)

    def contains(self, key: str) -> bool:
        return self.backend.get(key) is not None

    def keys(self) -> list[str]:
        return self.backend.keys()

    # ==================== Writes ====================

    def set(self, key: str, value: Any) -> None:
        """
        Write a value, propagating storage errors.

        Raises:
            StorageQuotaError: If the value exceeds a ceiling
            StorageWriteError: If writing fails
        """
        self.backend.set(key, json.dumps(value, separators=(",", ":")))

    def safe_set(self, key: str, value: Any) -> bool:
        """
        Write a value, running the cleanup cascade on quota failures.

        Returns:
            True if the value was written, False if it was dropped
        """
        try:
            raw = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            logger.error(f"Value for '{key}' is not JSON serializable: {e}")
            return False

        with self._lock:
            for tier in ("direct", "aggressive", "emergency"):
                if tier == "aggressive":
                    self.aggressive_cleanup()
                elif tier == "emergency":
                    self.emergency_cleanup()

                try:
                    self.backend.set(key, raw)
                    if tier != "direct":
                        logger.info(f"Stored '{key}' after {tier} cleanup")
                    return True
                except StorageQuotaError as e:
                    logger.warning(f"Quota exceeded writing '{key}' ({tier}): {e}")
                except StorageError as e:
                    logger.error(f"Storage error writing '{key}': {e}")
                    return False

        logger.error(f"Dropped write for '{key}': value does not fit even after emergency cleanup")
        metrics.increment("storage_write_dropped_total")
        return False

    def update(
        self,
        key: str,
        mutator: Callable[[Any], Any],
        default: Any = None,
    ) -> tuple[bool, Any]:
        """
        Read-modify-write a value under the store lock.

        ``mutator`` receives the current value (or a copy of ``default``) and
        returns the new value. Returning None keeps the mutated input.

        Returns:
            Tuple of (committed, new_value)
        """
        with self._lock:
            current = self.get(key, default)
            result = mutator(current)
            new_value = current if result is None else result
            return self.safe_set(key, new_value), new_value

    def remove(self, key: str) -> bool:
        with self._lock:
            return self.backend.delete(key)

    # ==================== Cleanup Cascade ====================

    def aggressive_cleanup(self) -> list[str]:
        """
        Truncate budgeted collections and delete transient keys.

        Returns:
            Keys that were modified or removed
        """
        touched = []
        with self._lock:
            for key in self.policy.collection_budgets:
                value = self.get(key)
                if value is None:
                    continue
                trimmed = self.policy.truncate(key, value)
                if trimmed != value:
                    try:
                        self.set(key, trimmed)
                        touched.append(key)
                    except StorageError as e:
                        logger.warning(f"Could not trim '{key}' during cleanup: {e}")

            for key in self.policy.transient_keys:
                if self.backend.delete(key):
                    touched.append(key)

        metrics.increment("storage_cleanup_total", labels={"tier": "aggressive"})
        logger.warning(f"Aggressive storage cleanup touched {len(touched)} keys")
        return touched

    def emergency_cleanup(self) -> list[str]:
        """
        Delete every non-essential key and re-create empty core collections.

        Returns:
            Keys that were removed
        """
        essential = set(self.policy.essential_keys)
        removed = []
        with self._lock:
            for key in self.backend.keys():
                if key not in essential:
                    self.backend.delete(key)
                    removed.append(key)

            for key, empty in self.policy.core_collections.items():
                try:
                    self.set(key, empty)
                except StorageError as e:
                    logger.error(f"Could not reinitialize '{key}' during emergency cleanup: {e}")

        metrics.increment("storage_cleanup_total", labels={"tier": "emergency"})
        logger.error(f"Emergency storage cleanup removed {len(removed)} keys")
        return removed

    # ==================== Introspection ====================

    def usage(self) -> dict[str, Any]:
        """Current quota usage."""
        used = self.backend.usage_bytes()
        limit = self.backend.total_limit_bytes
        return {
            "used_bytes": used,
            "total_limit_bytes": limit,
            "item_limit_bytes": self.backend.item_limit_bytes,
            "remaining_bytes": max(0, limit - used) if limit else None,
            "key_count": len(self.backend.keys()),
        }
