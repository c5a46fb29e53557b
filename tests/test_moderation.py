"""
Tests for content moderation: the off-platform predicate, the rule-based
filter, admin flag/delete actions and the admin action log.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from monitoring import metrics
from moderation import (
    ACTIONS_KEY,
    EMAIL_REPLACEMENT,
    MESSAGES_KEY,
    PHONE_REPLACEMENT,
    SOCIAL_REPLACEMENT,
    AdminActionLog,
    ContentFilter,
    FilterRule,
    MessageNotFoundError,
    ModerationService,
    RuleAction,
    Severity,
    ViolationType,
    contains_off_platform_contact,
)
from storage import StorageWriteError


@pytest.fixture
def content_filter(store):
    return ContentFilter(store)


@pytest.fixture
def action_log(store):
    return AdminActionLog(store)


@pytest.fixture
def moderation(store, action_log, content_filter):
    store.set(MESSAGES_KEY, [
        {"id": "msg_1", "fromId": "client_1", "toId": "talent_1", "content": "Great, thanks!"},
        {"id": "msg_2", "senderId": "client_2", "toId": "talent_1",
         "content": "reach me at alice@example.com"},
        {"id": "msg_3", "fromId": "client_3", "toId": "talent_2", "content": "See you Monday"},
    ])
    return ModerationService(store, action_log, content_filter)


# ============================================================
# Off-Platform Predicate
# ============================================================


class TestOffPlatformPredicate:
    """Tests for the flagging predicate."""

    def test_email_solicitation_flagged(self):
        assert contains_off_platform_contact("reach me at alice@example.com") is True

    def test_plain_message_not_flagged(self):
        assert contains_off_platform_contact("Great, thanks!") is False

    @pytest.mark.parametrize("text", [
        "call me on 555-123-4567",
        "+1 (555) 123-4567",
        "my instagram is @voice.pro",
        "add me on skype: narrator42",
        "discord narrator#1234",
        "check www.myvoicereel.com",
        "contact me via the other site",
        "let's hop on zoom",
        "message me on WhatsApp",
    ])
    def test_contact_patterns_flagged(self, text):
        assert contains_off_platform_contact(text) is True

    def test_keyword_inside_word_not_flagged(self):
        """Short handles like "ig" only match at a word start."""
        assert contains_off_platform_contact("I love sound design work") is False

    @pytest.mark.parametrize("text", ["", None])
    def test_empty_text(self, text):
        assert contains_off_platform_contact(text) is False


# ============================================================
# Content Filter
# ============================================================


class TestContentFilter:
    """Tests for the rule engine."""

    def test_email_blocked_and_redacted(self, content_filter):
        result = content_filter.filter_message("Email me at alice@example.com")

        assert result.is_allowed is False
        assert result.requires_review is True
        assert EMAIL_REPLACEMENT in result.filtered_content
        assert "alice@example.com" not in result.filtered_content

        email = next(v for v in result.violations if v["ruleId"] == "email_basic")
        assert email == {
            "type": "email",
            "ruleId": "email_basic",
            "match": "alice@example.com",
            "severity": "high",
            "position": 12,
        }

    def test_phone_redacted(self, content_filter):
        result = content_filter.filter_message("Call 555-123-4567 tonight")

        assert result.is_allowed is False
        assert result.filtered_content == f"Call {PHONE_REPLACEMENT} tonight"

    def test_social_handle_replaced_but_allowed(self, content_filter):
        result = content_filter.filter_message("Follow my instagram @voicepro")

        assert result.is_allowed is True
        assert result.requires_review is False
        assert SOCIAL_REPLACEMENT in result.filtered_content
        assert [v["ruleId"] for v in result.violations] == ["instagram"]

    def test_solicitation_flagged_for_review(self, content_filter):
        result = content_filter.filter_message("please contact me through the form")

        assert result.is_allowed is True
        assert result.requires_review is True
        assert result.filtered_content == "please contact me through the form"

    def test_clean_message(self, content_filter):
        result = content_filter.filter_message("Great, thanks!")

        assert result.to_dict() == {
            "isAllowed": True,
            "filteredContent": "Great, thanks!",
            "violations": [],
            "requiresReview": False,
        }

    def test_custom_rule_persisted_and_applied(self, content_filter, store):
        rule = content_filter.add_custom_rule(
            r"\bvenmo\b", "external_platform", "high", "block", description="Venmo"
        )

        assert rule.id.startswith("custom_")
        assert store.get("custom_filter_rules")[0]["pattern"] == r"\bvenmo\b"

        result = ContentFilter(store).filter_message("pay me with venmo")
        assert result.is_allowed is False
        assert result.violations[0]["ruleId"] == rule.id

    def test_custom_rule_invalid_pattern(self, content_filter):
        with pytest.raises(ValueError):
            content_filter.add_custom_rule("(unclosed", "email", "low", "flag")

    def test_custom_rule_invalid_enum(self, content_filter):
        with pytest.raises(ValueError):
            content_filter.add_custom_rule("x", "carrier_pigeon", "low", "flag")

    def test_remove_custom_rule(self, content_filter):
        rule = content_filter.add_custom_rule("venmo", "external_platform", "low", "flag")

        assert content_filter.remove_custom_rule(rule.id) is True
        assert content_filter.remove_custom_rule(rule.id) is False
        assert content_filter.custom_rules() == []

    def test_invalid_stored_rule_skipped(self, content_filter, store):
        store.set("custom_filter_rules", [{"id": "broken", "pattern": "x", "type": "nope"}])
        assert content_filter.custom_rules() == []

    def test_violation_stats(self, content_filter):
        stats = content_filter.violation_stats([
            "alice@example.com",
            "Great, thanks!",
            "call 555-123-4567",
        ])

        assert stats["byType"]["email"] == 1
        assert stats["byType"]["phone"] == 1
        assert stats["bySeverity"]["high"] == 2
        assert stats["total"] >= 2


class TestFilterRule:
    def test_round_trip(self):
        rule = FilterRule(
            id="r1",
            pattern="abc",
            type=ViolationType.WEBSITE,
            severity=Severity.LOW,
            action=RuleAction.FLAG,
        )
        assert FilterRule.from_dict(rule.to_dict()) == rule


# ============================================================
# Moderation Actions
# ============================================================


class TestModerationService:
    """Tests for flagging and deleting stored messages."""

    def test_flagged_messages_uses_predicate(self, moderation):
        assert [m["id"] for m in moderation.flagged_messages()] == ["msg_2"]

    def test_flag_message(self, moderation, store, action_log):
        flagged = moderation.flag("msg_3", "Suspicious", "admin_1")

        assert flagged["flagged"] is True
        assert flagged["flagReason"] == "Suspicious"
        assert flagged["flaggedBy"] == "admin_1"
        assert "flaggedAt" in flagged

        assert {m["id"] for m in moderation.flagged_messages()} == {"msg_2", "msg_3"}

        action = action_log.recent()[0]
        assert action["type"] == "message_flagged"
        assert action["adminId"] == "admin_1"
        assert action["details"] == {
            "messageId": "msg_3",
            "reason": "Suspicious",
            "content": "See you Monday",
        }
        assert metrics.get_counter("moderation_flags_total") == 1

    def test_flag_unknown_message(self, moderation, action_log):
        with pytest.raises(MessageNotFoundError) as exc_info:
            moderation.flag("missing", "x", "admin_1")

        assert exc_info.value.message_id == "missing"
        assert str(exc_info.value) == "Message not found"
        assert action_log.recent() == []

    def test_delete_message(self, moderation, store, action_log):
        removed = moderation.delete("msg_2", "admin_1")

        assert removed["id"] == "msg_2"
        assert [m["id"] for m in store.get(MESSAGES_KEY)] == ["msg_1", "msg_3"]

        action = action_log.recent()[0]
        assert action["type"] == "message_deleted"
        assert action["details"]["senderId"] == "client_2"
        assert action["details"]["content"] == "reach me at alice@example.com"
        assert metrics.get_counter("moderation_deletions_total") == 1

    def test_delete_falls_back_to_from_id(self, moderation, action_log):
        moderation.delete("msg_1", "admin_1")
        assert action_log.recent()[0]["details"]["senderId"] == "client_1"

    def test_delete_unknown_message(self, moderation, store):
        with pytest.raises(MessageNotFoundError):
            moderation.delete("missing", "admin_1")
        assert len(store.get(MESSAGES_KEY)) == 3

    def test_flag_not_logged_when_write_refused(self, moderation, store, action_log, monkeypatch):
        safe_set = store.safe_set
        monkeypatch.setattr(
            store, "safe_set",
            lambda key, value: False if key == MESSAGES_KEY else safe_set(key, value),
        )

        with pytest.raises(StorageWriteError):
            moderation.flag("msg_3", "Suspicious", "admin_1")

        assert action_log.recent() == []
        assert metrics.get_counter("moderation_flags_total") == 0
        assert not any(m.get("flagged") for m in store.get(MESSAGES_KEY))

    def test_delete_not_logged_when_write_refused(self, moderation, store, action_log, monkeypatch):
        safe_set = store.safe_set
        monkeypatch.setattr(
            store, "safe_set",
            lambda key, value: False if key == MESSAGES_KEY else safe_set(key, value),
        )

        with pytest.raises(StorageWriteError):
            moderation.delete("msg_1", "admin_1")

        assert action_log.recent() == []
        assert metrics.get_counter("moderation_deletions_total") == 0
        assert len(store.get(MESSAGES_KEY)) == 3

    def test_delete_logs_truncated_content(self, moderation, store, action_log):
        store.update(MESSAGES_KEY, lambda messages: messages + [
            {"id": "msg_long", "fromId": "client_4", "content": "x" * 300},
        ], [])

        removed = moderation.delete("msg_long", "admin_1")

        assert len(removed["content"]) == 300
        assert action_log.recent()[0]["details"]["content"] == "x" * 100


class TestAdminActionLog:
    """Tests for the capped, newest-first audit log."""

    def test_newest_first(self, action_log):
        action_log.log("first", "admin_1")
        action_log.log("second", "admin_1", {"key": "value"})

        actions = action_log.recent()
        assert [a["type"] for a in actions] == ["second", "first"]
        assert actions[0]["details"] == {"key": "value"}
        assert actions[1]["details"] == {}
        assert actions[0]["id"].startswith("action_")

    def test_capped(self, store):
        log = AdminActionLog(store, max_entries=3)
        for i in range(5):
            log.log(f"action_{i}", "admin_1")

        actions = store.get(ACTIONS_KEY)
        assert len(actions) == 3
        assert actions[0]["type"] == "action_4"

    def test_recent_limit(self, action_log):
        for i in range(5):
            action_log.log(f"action_{i}", "admin_1")
        assert len(action_log.recent(2)) == 2
