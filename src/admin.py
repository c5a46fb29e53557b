"""
VoiceCast - Administration

Admin accounts with role-based permissions, and the user management
actions available to them. Every action is written to the admin action log.

Roles:
    super_admin: every permission, and the only role that manages admins
    admin:       users, messages, content
    moderator:   messages, content
"""

import logging
from enum import Enum
from typing import Any

from accounts import (
    AccountValidationError,
    UserDirectory,
    hash_password,
    public_view,
    purge_user_data,
    validate_password,
    verify_password,
)
from config import AdminConfig
from moderation import MESSAGES_KEY, AdminActionLog, contains_off_platform_contact
from records import SCHEMA_VERSION, generate_id, utc_now_iso
from storage import PersistedStore, StorageWriteError

logger = logging.getLogger(__name__)

STORAGE_KEY = "admin_users"


class AdminRole(Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MODERATOR = "moderator"


ALL_PERMISSIONS = frozenset({"users", "messages", "content", "admins"})

ROLE_PERMISSIONS: dict[AdminRole, frozenset[str]] = {
    AdminRole.SUPER_ADMIN: ALL_PERMISSIONS,
    AdminRole.ADMIN: frozenset({"users", "messages", "content"}),
    AdminRole.MODERATOR: frozenset({"messages", "content"}),
}


class AdminAuthError(Exception):
    """Raised when admin credentials are rejected."""
    pass


class AdminPermissionError(Exception):
    """Raised when an admin lacks the role for an operation."""
    pass


class AdminValidationError(ValueError):
    """Raised when admin input fails validation."""
    pass


def has_permission(admin: dict[str, Any] | None, permission: str) -> bool:
    if not admin or not admin.get("isActive", True):
        return False
    try:
        role = AdminRole(admin.get("role"))
    except ValueError:
        return False
    return permission in ROLE_PERMISSIONS[role]


class AdminDirectory:
    """Admin accounts stored under ``admin_users``."""

    def __init__(
        self,
        store: PersistedStore,
        action_log: AdminActionLog | None = None,
        config: AdminConfig | None = None,
    ):
        self.store = store
        self.action_log = action_log or AdminActionLog(store)
        self.config = config or AdminConfig.from_env()
        self._bootstrap()

    def _bootstrap(self) -> None:
        if self.all() or not self.config.bootstrap_password:
            return
        admin = self._new_admin(
            self.config.bootstrap_username, self.config.bootstrap_password, AdminRole.SUPER_ADMIN
        )
        if self.store.safe_set(STORAGE_KEY, [admin]):
            logger.info(f"Bootstrapped super admin '{admin['username']}'")
        else:
            logger.error("Could not persist bootstrap super admin")

    def _new_admin(self, username: str, password: str, role: AdminRole) -> dict[str, Any]:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "id": generate_id("admin"),
            "username": username.strip().lower(),
            "role": role.value,
            "isActive": True,
            "passwordHash": hash_password(password),
            "createdAt": utc_now_iso(),
        }

    def all(self) -> list[dict[str, Any]]:
        return self.store.get(STORAGE_KEY, [])

    def _get(self, admin_id: str) -> dict[str, Any] | None:
        for admin in self.all():
            if admin.get("id") == admin_id:
                return admin
        return None

    def get(self, admin_id: str) -> dict[str, Any] | None:
        admin = self._get(admin_id)
        return public_view(admin) if admin else None

    def _by_username(self, username: str) -> dict[str, Any] | None:
        wanted = (username or "").strip().lower()
        for admin in self.all():
            if admin.get("username") == wanted:
                return admin
        return None

    def _require_super_admin(self, admin_id: str) -> dict[str, Any]:
        admin = self.get(admin_id)
        if not admin or admin.get("role") != AdminRole.SUPER_ADMIN.value:
            raise AdminPermissionError("Only super administrators can manage admin accounts")
        return admin

    def _set_password(self, admin_id: str, new_password: str) -> None:
        try:
            validate_password(new_password)
        except AccountValidationError as e:
            raise AdminValidationError(str(e)) from e

        encoded = hash_password(new_password)
        found = False

        def apply(admins: list) -> list:
            nonlocal found
            for admin in admins:
                if admin.get("id") == admin_id:
                    admin["passwordHash"] = encoded
                    found = True
            return admins

        committed, _ = self.store.update(STORAGE_KEY, apply, [])
        if not found:
            raise AdminValidationError("Admin not found")
        if not committed:
            raise StorageWriteError(f"Could not persist password for admin {admin_id}")

    def authenticate(self, username: str, password: str) -> dict[str, Any]:
        """
        Check admin credentials.

        Raises:
            AdminAuthError: If the account is unknown, inactive or the password is wrong
        """
        admin = self._by_username(username)
        if admin is None or not verify_password(password, admin.get("passwordHash")):
            raise AdminAuthError("Invalid admin credentials")
        if not admin.get("isActive", True):
            raise AdminAuthError("Admin account is deactivated")

        admin_id = admin["id"]
        last_login = utc_now_iso()

        def touch(admins: list) -> list:
            for record in admins:
                if record.get("id") == admin_id:
                    record["lastLogin"] = last_login
            return admins

        self.store.update(STORAGE_KEY, touch, [])
        logger.info(f"Admin {admin_id} authenticated")
        return public_view({**admin, "lastLogin": last_login})

    def change_password(self, admin_id: str, old_password: str, new_password: str) -> None:
        admin = self._get(admin_id)
        if admin is None:
            raise AdminValidationError("Admin not found")
        if not verify_password(old_password, admin.get("passwordHash")):
            raise AdminAuthError("Current password is incorrect")

        self._set_password(admin_id, new_password)
        self.action_log.log("password_changed", admin_id, {
            "targetId": admin_id,
            "targetType": "admin",
        })

    def create_admin(
        self, creator_id: str, username: str, password: str, role: str = "admin"
    ) -> dict[str, Any]:
        """
        Create another admin account.

        Raises:
            AdminPermissionError: If the creator is not a super admin
            AdminValidationError: If the username is taken or input is invalid
        """
        self._require_super_admin(creator_id)

        try:
            admin_role = AdminRole(role)
        except ValueError as e:
            raise AdminValidationError(f"Unknown admin role: {role!r}") from e
        if not (username or "").strip():
            raise AdminValidationError("Username is required")
        try:
            validate_password(password)
        except AccountValidationError as e:
            raise AdminValidationError(str(e)) from e

        admin = self._new_admin(username, password, admin_role)

        def append(admins: list) -> list:
            if any(a.get("username") == admin["username"] for a in admins):
                raise AdminValidationError(f"Admin '{admin['username']}' already exists")
            return admins + [admin]

        committed, _ = self.store.update(STORAGE_KEY, append, [])
        if not committed:
            raise StorageWriteError(f"Could not persist admin {admin['id']}")

        self.action_log.log("admin_created", creator_id, {
            "targetId": admin["id"],
            "targetType": "admin",
            "username": admin["username"],
            "role": admin_role.value,
        })
        return public_view(admin)

    def reset_password(self, creator_id: str, admin_id: str, new_password: str) -> None:
        self._require_super_admin(creator_id)
        self._set_password(admin_id, new_password)
        self.action_log.log("password_changed", creator_id, {
            "targetId": admin_id,
            "targetType": "admin",
            "reason": "Password reset by super administrator",
        })

    def has_permission(self, admin_id: str, permission: str) -> bool:
        return has_permission(self.get(admin_id), permission)


class UserAdministration:
    """User management on behalf of admins."""

    def __init__(
        self,
        store: PersistedStore,
        users: UserDirectory | None = None,
        action_log: AdminActionLog | None = None,
    ):
        self.store = store
        self.users = users or UserDirectory(store)
        self.action_log = action_log or AdminActionLog(store)

    def suspend_user(self, user_id: str, admin_id: str, reason: str) -> dict[str, Any]:
        """
        Suspend a user so they can no longer sign in.

        Raises:
            KeyError: If the user does not exist
        """
        user = self.users.set_status(user_id, "suspended", suspensionReason=reason)
        self.action_log.log("user_suspended", admin_id, {
            "targetId": user_id,
            "targetType": "user",
            "reason": reason,
            "userEmail": user.get("email"),
        })
        return user

    def activate_user(self, user_id: str, admin_id: str) -> dict[str, Any]:
        user = self.users.set_status(user_id, "active", suspensionReason=None)
        self.action_log.log("user_activated", admin_id, {
            "targetId": user_id,
            "targetType": "user",
            "userEmail": user.get("email"),
        })
        return user

    def delete_user(self, user_id: str, admin_id: str) -> dict[str, int]:
        """
        Delete a user and everything that involves them.

        Raises:
            KeyError: If the user does not exist
        """
        user = self.users.get(user_id)
        if user is None:
            raise KeyError(f"User {user_id} not found")

        self.users.delete(user_id)
        removed = purge_user_data(self.store, user_id)

        self.action_log.log("user_deleted", admin_id, {
            "targetId": user_id,
            "targetType": "user",
            "userEmail": user.get("email"),
            "userName": user.get("name"),
            "removed": removed,
        })
        return removed

    def system_stats(self) -> dict[str, Any]:
        users = self.users.all()
        messages = self.store.get(MESSAGES_KEY, [])
        escrows = self.store.get("escrow_payments", [])

        escrows_by_status: dict[str, int] = {}
        for escrow in escrows:
            status = escrow.get("status", "unknown")
            escrows_by_status[status] = escrows_by_status.get(status, 0) + 1

        return {
            "users": {
                "total": len(users),
                "active": sum(1 for u in users if u.get("status", "active") == "active"),
                "suspended": sum(1 for u in users if u.get("status") == "suspended"),
                "clients": sum(1 for u in users if u.get("type") == "client"),
                "talents": sum(1 for u in users if u.get("type") == "talent"),
            },
            "messages": {
                "total": len(messages),
                "flagged": sum(
                    1 for m in messages
                    if m.get("flagged") or contains_off_platform_contact(m.get("content"))
                ),
                "pending": len(self.store.get("pendingMessages", [])),
            },
            "escrows": {
                "total": len(escrows),
                "byStatus": escrows_by_status,
                "volume": round(sum(e.get("amount", 0) for e in escrows), 2),
            },
        }
