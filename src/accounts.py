"""
VoiceCast - User Accounts

Client and talent accounts stored under the ``users`` key. Passwords are
stored as PBKDF2-SHA256 hashes and never leave this module: every public
view of a user drops ``passwordHash``.
"""

import logging
import re
import secrets
from typing import Any

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from records import SCHEMA_VERSION, generate_id, utc_now_iso
from storage import PersistedStore, StorageWriteError

logger = logging.getLogger(__name__)

STORAGE_KEY = "users"

USER_TYPES = ("client", "talent")
MIN_PASSWORD_LENGTH = 6
MIN_NAME_LENGTH = 2

PBKDF2_ITERATIONS = 120_000
HASH_LENGTH = 32
SALT_SIZE = 16

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_AVATARS = {
    "client": "https://images.pexels.com/photos/614810/pexels-photo-614810.jpeg?auto=compress&cs=tinysrgb&w=100",
    "talent": "https://images.pexels.com/photos/415829/pexels-photo-415829.jpeg?auto=compress&cs=tinysrgb&w=100",
}

# Fields callers may not overwrite through update()
_PROTECTED_FIELDS = frozenset({"id", "email", "createdAt", "passwordHash", "schemaVersion"})


class AccountValidationError(ValueError):
    """Raised when account input fails validation."""
    pass


# ============================================================
# Password Hashing
# ============================================================

def _kdf(salt: str, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=HASH_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Hash a password as ``pbkdf2_sha256$<iterations>$<salt>$<hash>``."""
    salt = secrets.token_hex(SALT_SIZE)
    digest = _kdf(salt, iterations).derive(password.encode("utf-8"))
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str | None) -> bool:
    if not encoded:
        return False
    try:
        algorithm, iterations, salt, expected = encoded.split("$", 3)
        kdf = _kdf(salt, int(iterations))
        expected_digest = bytes.fromhex(expected)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    try:
        kdf.verify(password.encode("utf-8"), expected_digest)
    except InvalidKey:
        return False
    return True


def public_view(user: dict[str, Any]) -> dict[str, Any]:
    """A user record without credentials."""
    return {k: v for k, v in user.items() if k != "passwordHash"}


def validate_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise AccountValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )


# ============================================================
# User Directory
# ============================================================

class UserDirectory:
    """Registration, authentication and profile updates for marketplace users."""

    def __init__(self, store: PersistedStore):
        self.store = store

    def _all(self) -> list[dict[str, Any]]:
        return self.store.get(STORAGE_KEY, [])

    def all(self) -> list[dict[str, Any]]:
        return [public_view(u) for u in self._all()]

    def _find_by_email(self, email: str) -> dict[str, Any] | None:
        wanted = email.strip().lower()
        for user in self._all():
            if user.get("email", "").lower() == wanted:
                return user
        return None

    def get(self, user_id: str) -> dict[str, Any] | None:
        for user in self._all():
            if user.get("id") == user_id:
                return public_view(user)
        return None

    def get_by_email(self, email: str) -> dict[str, Any] | None:
        user = self._find_by_email(email)
        return public_view(user) if user else None

    def create_user(
        self,
        email: str,
        password: str,
        type: str,
        name: str,
        profile: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Register a new user.

        Raises:
            AccountValidationError: If any field is invalid or the email is taken
            StorageWriteError: If the account could not be persisted
        """
        email = (email or "").strip()
        name = (name or "").strip()

        if not _EMAIL_RE.match(email):
            raise AccountValidationError("Please enter a valid email address")
        if self._find_by_email(email):
            raise AccountValidationError("An account with this email already exists")
        validate_password(password)
        if len(name) < MIN_NAME_LENGTH:
            raise AccountValidationError(f"Name must be at least {MIN_NAME_LENGTH} characters long")
        if type not in USER_TYPES:
            raise AccountValidationError(f"User type must be one of {', '.join(USER_TYPES)}")

        user = {
            "schemaVersion": SCHEMA_VERSION,
            "id": generate_id("user"),
            "email": email.lower(),
            "passwordHash": hash_password(password),
            "name": name,
            "type": type,
            "avatar": DEFAULT_AVATARS[type],
            "status": "active",
            "createdAt": utc_now_iso(),
            "profile": profile or {},
        }

        def append(users: list) -> list:
            if any(u.get("email", "").lower() == user["email"] for u in users):
                raise AccountValidationError("An account with this email already exists")
            return users + [user]

        committed, _ = self.store.update(STORAGE_KEY, append, [])
        if not committed:
            raise StorageWriteError(f"Could not persist user {user['id']}")

        logger.info(f"Created {type} account {user['id']}")
        return public_view(user)

    def authenticate(self, email: str, password: str, type: str) -> dict[str, Any] | None:
        """
        Check credentials for a user of the given type.

        Returns:
            The user without credentials, or None if authentication failed
        """
        user = self._find_by_email(email or "")
        if user is None or not verify_password(password, user.get("passwordHash")):
            return None
        if user.get("type") != type:
            logger.info(f"Login for {user['id']} rejected: account is {user.get('type')}")
            return None
        if user.get("status") == "suspended":
            logger.info(f"Login for suspended account {user['id']} rejected")
            return None

        user_id = user["id"]
        last_login = utc_now_iso()

        def touch(users: list) -> list:
            for record in users:
                if record.get("id") == user_id:
                    record["lastLogin"] = last_login
            return users

        self.store.update(STORAGE_KEY, touch, [])
        return public_view({**user, "lastLogin": last_login})

    def update(self, user_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        """
        Merge profile updates into a user.

        Raises:
            KeyError: If the user does not exist
            AccountValidationError: If a protected field is being changed
        """
        blocked = _PROTECTED_FIELDS.intersection(updates)
        if blocked:
            raise AccountValidationError(f"Cannot update protected fields: {', '.join(sorted(blocked))}")
        return self._modify(user_id, lambda user: user.update(updates))

    def set_status(self, user_id: str, status: str, **extra) -> dict[str, Any]:
        return self._modify(user_id, lambda user: user.update(extra, status=status))

    def update_password(self, email: str, new_password: str) -> bool:
        """
        Replace a user's password.

        Returns:
            False if no user has this email
        """
        validate_password(new_password)
        user = self._find_by_email(email or "")
        if user is None:
            return False
        encoded = hash_password(new_password)
        self._modify(user["id"], lambda record: record.update(passwordHash=encoded))
        return True

    def _modify(self, user_id: str, change) -> dict[str, Any]:
        result: dict[str, Any] = {}

        def apply(users: list) -> list:
            for user in users:
                if user.get("id") == user_id:
                    change(user)
                    user["updatedAt"] = utc_now_iso()
                    result.update(user)
                    return users
            raise KeyError(f"User {user_id} not found")

        committed, _ = self.store.update(STORAGE_KEY, apply, [])
        if not committed:
            raise StorageWriteError(f"Could not persist user {user_id}")
        return public_view(result)

    def delete(self, user_id: str) -> bool:
        removed = False

        def apply(users: list) -> list:
            nonlocal removed
            kept = [u for u in users if u.get("id") != user_id]
            removed = len(kept) != len(users)
            return kept

        committed, _ = self.store.update(STORAGE_KEY, apply, [])
        return committed and removed

    def stats(self) -> dict[str, int]:
        users = self._all()
        return {
            "totalUsers": len(users),
            "clients": sum(1 for u in users if u.get("type") == "client"),
            "talent": sum(1 for u in users if u.get("type") == "talent"),
            "suspended": sum(1 for u in users if u.get("status") == "suspended"),
        }


# ============================================================
# Cascading Cleanup
# ============================================================

def _involves(record: dict[str, Any], user_id: str, fields: tuple[str, ...]) -> bool:
    return any(record.get(name) == user_id for name in fields)


# key -> predicate deciding whether a record belongs to the user
_USER_OWNED = {
    "messages": lambda r, uid: _involves(r, uid, ("senderId", "receiverId", "fromId", "toId")),
    "sentMessages": lambda r, uid: _involves(r, uid, ("senderId", "receiverId", "fromId", "toId")),
    "pendingMessages": lambda r, uid: _involves(r, uid, ("fromId", "toId")),
    "conversations": lambda r, uid: uid in (r.get("participants") or []),
    "escrow_payments": lambda r, uid: _involves(r, uid, ("clientId", "talentId")),
    "audio_files": lambda r, uid: r.get("userId") == uid,
}


def purge_user_data(store: PersistedStore, user_id: str) -> dict[str, int]:
    """
    Remove every message, conversation, escrow and audio file involving a user.

    Returns:
        Number of records removed per storage key
    """
    removed: dict[str, int] = {}
    for key, owned in _USER_OWNED.items():
        if not store.contains(key):
            continue

        def apply(records: list) -> list:
            kept = [r for r in records if not (isinstance(r, dict) and owned(r, user_id))]
            removed[key] = len(records) - len(kept)
            return kept

        committed, _ = store.update(key, apply, [])
        if not committed:
            raise StorageWriteError(f"Could not purge '{key}' for user {user_id}")

    logger.info(f"Purged data for {user_id}", extra={"removed": removed})
    return removed
