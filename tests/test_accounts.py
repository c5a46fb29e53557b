"""
Tests for user accounts and cascading user-data cleanup.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from accounts import (
    STORAGE_KEY,
    AccountValidationError,
    UserDirectory,
    hash_password,
    purge_user_data,
    verify_password,
)


@pytest.fixture
def users(store):
    return UserDirectory(store)


@pytest.fixture
def client_user(users):
    return users.create_user("Casey@Example.com", "secret123", "client", "Casey Client")


# ============================================================
# Password Hashing
# ============================================================


class TestPasswordHashing:
    """Tests for PBKDF2 password hashes."""

    def test_hash_format(self):
        encoded = hash_password("secret123", iterations=1000)
        algorithm, iterations, salt, digest = encoded.split("$")

        assert algorithm == "pbkdf2_sha256"
        assert iterations == "1000"
        assert len(salt) == 32
        assert len(digest) == 64

    def test_salted(self):
        assert hash_password("secret123", 1000) != hash_password("secret123", 1000)

    def test_verify(self):
        encoded = hash_password("secret123", iterations=1000)
        assert verify_password("secret123", encoded) is True
        assert verify_password("wrong", encoded) is False

    @pytest.mark.parametrize("encoded", [None, "", "plaintext", "md5$1$salt$abc", "pbkdf2_sha256$x$s$h"])
    def test_verify_malformed(self, encoded):
        assert verify_password("secret123", encoded) is False


# ============================================================
# Registration and Authentication
# ============================================================


class TestCreateUser:
    """Tests for registration."""

    def test_create_user(self, client_user, store):
        assert client_user["email"] == "casey@example.com"
        assert client_user["type"] == "client"
        assert client_user["status"] == "active"
        assert client_user["id"].startswith("user_")
        assert "passwordHash" not in client_user
        assert "pexels" in client_user["avatar"]

        stored = store.get(STORAGE_KEY)[0]
        assert stored["passwordHash"].startswith("pbkdf2_sha256$")

    def test_duplicate_email_case_insensitive(self, users, client_user):
        with pytest.raises(AccountValidationError, match="already exists"):
            users.create_user("CASEY@example.com", "secret123", "talent", "Other")

    @pytest.mark.parametrize("email,password,user_type,name", [
        ("not-an-email", "secret123", "client", "Casey"),
        ("a@example.com", "short", "client", "Casey"),
        ("a@example.com", "secret123", "client", "C"),
        ("a@example.com", "secret123", "admin", "Casey"),
    ])
    def test_validation(self, users, email, password, user_type, name):
        with pytest.raises(AccountValidationError):
            users.create_user(email, password, user_type, name)
        assert users.all() == []


class TestAuthenticate:
    """Tests for sign-in."""

    def test_success_sets_last_login(self, users, client_user):
        user = users.authenticate("casey@example.com", "secret123", "client")

        assert user["id"] == client_user["id"]
        assert "passwordHash" not in user
        assert users.get(client_user["id"])["lastLogin"] == user["lastLogin"]

    def test_wrong_password(self, users, client_user):
        assert users.authenticate("casey@example.com", "wrong-password", "client") is None

    def test_unknown_email(self, users):
        assert users.authenticate("nobody@example.com", "secret123", "client") is None

    def test_type_mismatch(self, users, client_user):
        assert users.authenticate("casey@example.com", "secret123", "talent") is None

    def test_suspended_user(self, users, client_user):
        users.set_status(client_user["id"], "suspended", suspensionReason="spam")
        assert users.authenticate("casey@example.com", "secret123", "client") is None


# ============================================================
# Updates
# ============================================================


class TestUpdates:
    """Tests for profile and password changes."""

    def test_update_profile_fields(self, users, client_user):
        updated = users.update(client_user["id"], {"name": "Casey C.", "company": "Acme"})

        assert updated["name"] == "Casey C."
        assert updated["company"] == "Acme"
        assert "updatedAt" in updated

    @pytest.mark.parametrize("field", ["id", "passwordHash", "email"])
    def test_protected_fields(self, users, client_user, field):
        with pytest.raises(AccountValidationError):
            users.update(client_user["id"], {field: "x"})

    def test_update_unknown_user(self, users):
        with pytest.raises(KeyError):
            users.update("user_missing", {"name": "X"})

    def test_update_password(self, users, client_user):
        assert users.update_password("casey@example.com", "new-secret") is True
        assert users.authenticate("casey@example.com", "secret123", "client") is None
        assert users.authenticate("casey@example.com", "new-secret", "client") is not None

    def test_update_password_unknown_email(self, users):
        assert users.update_password("nobody@example.com", "new-secret") is False

    def test_update_password_too_short(self, users, client_user):
        with pytest.raises(AccountValidationError):
            users.update_password("casey@example.com", "123")

    def test_get_by_email(self, users, client_user):
        assert users.get_by_email("CASEY@EXAMPLE.COM")["id"] == client_user["id"]
        assert users.get_by_email("nobody@example.com") is None

    def test_delete(self, users, client_user):
        assert users.delete(client_user["id"]) is True
        assert users.delete(client_user["id"]) is False
        assert users.get(client_user["id"]) is None

    def test_stats(self, users, client_user):
        talent = users.create_user("taylor@example.com", "secret123", "talent", "Taylor")
        users.set_status(talent["id"], "suspended")

        assert users.stats() == {"totalUsers": 2, "clients": 1, "talent": 1, "suspended": 1}


# ============================================================
# Cascading Cleanup
# ============================================================


class TestPurgeUserData:
    """Tests for removing everything that involves a user."""

    def test_purge(self, store):
        store.set("messages", [
            {"id": "m1", "senderId": "u1", "receiverId": "u2"},
            {"id": "m2", "fromId": "u3", "toId": "u1"},
            {"id": "m3", "fromId": "u2", "toId": "u3"},
        ])
        store.set("conversations", [
            {"id": "c1", "participants": ["u1", "u2"]},
            {"id": "c2", "participants": ["u2", "u3"]},
        ])
        store.set("escrow_payments", [
            {"id": "e1", "clientId": "u2", "talentId": "u1"},
            {"id": "e2", "clientId": "u2", "talentId": "u3"},
        ])
        store.set("audio_files", [{"id": "a1", "userId": "u1"}])

        removed = purge_user_data(store, "u1")

        assert removed == {"messages": 2, "conversations": 1, "escrow_payments": 1, "audio_files": 1}
        assert [m["id"] for m in store.get("messages")] == ["m3"]
        assert [c["id"] for c in store.get("conversations")] == ["c2"]
        assert [e["id"] for e in store.get("escrow_payments")] == ["e2"]
        assert store.get("audio_files") == []

    def test_missing_keys_not_created(self, store):
        assert purge_user_data(store, "u1") == {}
        assert store.keys() == []
