"""
VoiceCast - Content Moderation

Detects attempts to move conversations off the platform (emails, phone
numbers, social handles, external meeting tools) and gives admins the tools
to act on them.

- ``contains_off_platform_contact``: the flagging predicate. Any regex hit
  makes a message a flagging candidate. There is no scoring and no context
  awareness, so "my portfolio is on linkedin" is flagged like a real
  evasion attempt.
- ``ContentFilter``: rule engine that reports violations and redacts
  contact details before a message is shown.
- ``ModerationService``: flag and delete stored messages.
- ``AdminActionLog``: newest-first audit log capped at 1000 entries.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from monitoring import counted, metrics
from records import generate_id, utc_now_iso
from storage import PersistedStore, StorageWriteError

logger = logging.getLogger(__name__)

MESSAGES_KEY = "messages"
ACTIONS_KEY = "admin_actions"
CUSTOM_RULES_KEY = "custom_filter_rules"

MAX_ADMIN_ACTIONS = 1000

EMAIL_REPLACEMENT = "[EMAIL REMOVED - Please use platform messaging]"
PHONE_REPLACEMENT = "[PHONE REMOVED - Please use platform messaging]"
SOCIAL_REPLACEMENT = "[SOCIAL MEDIA REMOVED - Please keep communication on platform]"
EXTERNAL_REPLACEMENT = "[EXTERNAL PLATFORM REMOVED - Please use our messaging system]"

# ============================================================
# Patterns
# ============================================================

EMAIL_PATTERN = r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"
PHONE_PATTERN = r"(\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}"
WEBSITE_PATTERN = r"(?:www\.)?[a-zA-Z0-9-]+\.[a-zA-Z]{2,}(?:/[^\s]*)?"


def _handle(keywords: str, handle_chars: str = "a-zA-Z0-9._") -> str:
    # Leading \b keeps "ig" in "design" or "fb" in "fbi" from matching
    return rf"\b(?:{keywords})[\s:@]*[{handle_chars}]+"


def _solicitation(verb: str) -> str:
    return rf"{verb}\s+me\s+(?:at|on|via|through)"


OFF_PLATFORM_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        EMAIL_PATTERN,
        PHONE_PATTERN,
        _handle("instagram|insta|ig"),
        _handle("twitter|tweet"),
        _handle("facebook|fb"),
        _handle("linkedin"),
        _handle("skype"),
        _handle("discord", "a-zA-Z0-9._#"),
        WEBSITE_PATTERN,
        _solicitation("contact"),
        _solicitation("reach"),
        _solicitation("find"),
        r"(?:whatsapp|telegram|signal|zoom|teams)",
    )
]


def contains_off_platform_contact(text: str | None) -> bool:
    """True if any off-platform contact pattern appears in ``text``."""
    if not text:
        return False
    return any(pattern.search(text) for pattern in OFF_PLATFORM_PATTERNS)


# ============================================================
# Rule Engine
# ============================================================

class ViolationType(Enum):
    EMAIL = "email"
    PHONE = "phone"
    SOCIAL = "social"
    WEBSITE = "website"
    EXTERNAL_PLATFORM = "external_platform"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RuleAction(Enum):
    FLAG = "flag"
    BLOCK = "block"
    REPLACE = "replace"


@dataclass
class FilterRule:
    """A single moderation rule."""
    id: str
    pattern: str
    type: ViolationType
    severity: Severity
    action: RuleAction
    description: str = ""
    replacement: str | None = None
    compiled: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        try:
            self.compiled = re.compile(self.pattern, re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"Invalid pattern for rule {self.id}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "type": self.type.value,
            "severity": self.severity.value,
            "action": self.action.value,
            "description": self.description,
            "replacement": self.replacement,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FilterRule":
        return cls(
            id=data["id"],
            pattern=data["pattern"],
            type=ViolationType(data["type"]),
            severity=Severity(data["severity"]),
            action=RuleAction(data["action"]),
            description=data.get("description", ""),
            replacement=data.get("replacement"),
        )


def _social_rule(rule_id: str, keywords: str) -> FilterRule:
    return FilterRule(
        id=rule_id,
        pattern=_handle(keywords),
        type=ViolationType.SOCIAL,
        severity=Severity.MEDIUM,
        action=RuleAction.REPLACE,
        replacement=SOCIAL_REPLACEMENT,
        description=f"{rule_id.capitalize()} handle or reference",
    )


def _external_rule(rule_id: str, keywords: str, handle_chars: str = "a-zA-Z0-9._") -> FilterRule:
    return FilterRule(
        id=rule_id,
        pattern=_handle(keywords, handle_chars),
        type=ViolationType.EXTERNAL_PLATFORM,
        severity=Severity.HIGH,
        action=RuleAction.REPLACE,
        replacement=EXTERNAL_REPLACEMENT,
        description=f"{rule_id.capitalize()} contact",
    )


def _solicitation_rule(rule_id: str, verb: str) -> FilterRule:
    return FilterRule(
        id=rule_id,
        pattern=_solicitation(verb),
        type=ViolationType.EXTERNAL_PLATFORM,
        severity=Severity.MEDIUM,
        action=RuleAction.FLAG,
        description=f'"{verb} me at/on/via" solicitation',
    )


def default_rules() -> list[FilterRule]:
    return [
        FilterRule(
            id="email_basic",
            pattern=EMAIL_PATTERN,
            type=ViolationType.EMAIL,
            severity=Severity.HIGH,
            action=RuleAction.REPLACE,
            replacement=EMAIL_REPLACEMENT,
            description="Email address",
        ),
        FilterRule(
            id="phone_us",
            pattern=PHONE_PATTERN,
            type=ViolationType.PHONE,
            severity=Severity.HIGH,
            action=RuleAction.REPLACE,
            replacement=PHONE_REPLACEMENT,
            description="US phone number",
        ),
        _social_rule("instagram", "instagram|insta|ig"),
        _social_rule("twitter", "twitter|tweet"),
        _social_rule("facebook", "facebook|fb"),
        _social_rule("linkedin", "linkedin"),
        _external_rule("skype", "skype"),
        _external_rule("discord", "discord", "a-zA-Z0-9._#"),
        _external_rule("whatsapp", "whatsapp|whats app", "a-zA-Z0-9._+"),
        _external_rule("telegram", "telegram"),
        FilterRule(
            id="website",
            pattern=WEBSITE_PATTERN,
            type=ViolationType.WEBSITE,
            severity=Severity.MEDIUM,
            action=RuleAction.FLAG,
            description="Website or URL",
        ),
        _solicitation_rule("contact_me", "contact"),
        _solicitation_rule("reach_me", "reach"),
        _solicitation_rule("find_me", "find"),
    ]


@dataclass
class FilterResult:
    """Outcome of running a message through the content filter."""
    is_allowed: bool
    filtered_content: str
    violations: list[dict[str, Any]]
    requires_review: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "isAllowed": self.is_allowed,
            "filteredContent": self.filtered_content,
            "violations": self.violations,
            "requiresReview": self.requires_review,
        }


class ContentFilter:
    """Rule-based message filter with persisted custom rules."""

    def __init__(self, store: PersistedStore):
        self.store = store
        self.builtin_rules = default_rules()

    def custom_rules(self) -> list[FilterRule]:
        rules = []
        for data in self.store.get(CUSTOM_RULES_KEY, []):
            try:
                rules.append(FilterRule.from_dict(data))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid custom filter rule {data.get('id')}: {e}")
        return rules

    def rules(self) -> list[FilterRule]:
        return self.builtin_rules + self.custom_rules()

    def filter_message(self, content: str) -> FilterResult:
        """
        Check a message against every rule.

        Violations are located in the original text; replacements are
        applied to the filtered copy in rule order.
        """
        violations = []
        filtered = content
        requires_review = False

        for rule in self.rules():
            matches = list(rule.compiled.finditer(content))
            if not matches:
                continue

            for match in matches:
                violations.append({
                    "type": rule.type.value,
                    "ruleId": rule.id,
                    "match": match.group(0),
                    "severity": rule.severity.value,
                    "position": match.start(),
                })

            if rule.action == RuleAction.REPLACE and rule.replacement:
                filtered = rule.compiled.sub(rule.replacement, filtered)

            if rule.severity == Severity.HIGH or rule.action == RuleAction.FLAG:
                requires_review = True

        is_allowed = not any(v["severity"] == Severity.HIGH.value for v in violations)
        return FilterResult(
            is_allowed=is_allowed,
            filtered_content=filtered,
            violations=violations,
            requires_review=requires_review,
        )

    def add_custom_rule(
        self,
        pattern: str,
        type: str,
        severity: str,
        action: str,
        description: str = "",
        replacement: str | None = None,
    ) -> FilterRule:
        """
        Persist an additional rule.

        Raises:
            ValueError: If the pattern or an enum value is invalid
        """
        rule = FilterRule(
            id=f"custom_{int(time.time() * 1000)}",
            pattern=pattern,
            type=ViolationType(type),
            severity=Severity(severity),
            action=RuleAction(action),
            description=description,
            replacement=replacement,
        )
        if any(r.id == rule.id for r in self.custom_rules()):
            rule.id = generate_id("custom")

        committed, _ = self.store.update(
            CUSTOM_RULES_KEY, lambda rules: rules + [rule.to_dict()], []
        )
        if not committed:
            raise ValueError(f"Could not persist custom rule {rule.id}")
        return rule

    def remove_custom_rule(self, rule_id: str) -> bool:
        removed = False

        def apply(rules: list) -> list:
            nonlocal removed
            kept = [r for r in rules if r.get("id") != rule_id]
            removed = len(kept) != len(rules)
            return kept

        committed, _ = self.store.update(CUSTOM_RULES_KEY, apply, [])
        return committed and removed

    def violation_stats(self, messages: list[str]) -> dict[str, Any]:
        """Aggregate violations over a batch of message bodies."""
        stats: dict[str, Any] = {"total": 0, "byType": {}, "bySeverity": {}}
        for content in messages:
            for violation in self.filter_message(content).violations:
                stats["total"] += 1
                stats["byType"][violation["type"]] = stats["byType"].get(violation["type"], 0) + 1
                stats["bySeverity"][violation["severity"]] = (
                    stats["bySeverity"].get(violation["severity"], 0) + 1
                )
        return stats


# ============================================================
# Admin Actions
# ============================================================

class MessageNotFoundError(KeyError):
    """Raised when a moderated message id does not exist."""

    def __init__(self, message_id: str):
        super().__init__(message_id)
        self.message_id = message_id

    def __str__(self) -> str:
        return "Message not found"


class AdminActionLog:
    """Newest-first audit trail of admin actions."""

    def __init__(self, store: PersistedStore, max_entries: int = MAX_ADMIN_ACTIONS):
        self.store = store
        self.max_entries = max_entries

    def log(self, action_type: str, admin_id: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
        action = {
            "id": generate_id("action"),
            "type": action_type,
            "adminId": admin_id,
            "details": details or {},
            "timestamp": utc_now_iso(),
        }

        committed, _ = self.store.update(
            ACTIONS_KEY,
            lambda actions: ([action] + actions)[: self.max_entries],
            [],
        )
        if not committed:
            logger.error(f"Could not record admin action {action_type} by {admin_id}")
        logger.info(f"Admin action {action_type} by {admin_id}", extra={"details": action["details"]})
        return action

    def recent(self, limit: int = 100) -> list[dict[str, Any]]:
        return self.store.get(ACTIONS_KEY, [])[:limit]


class ModerationService:
    """Flag and delete stored messages on behalf of admins."""

    def __init__(
        self,
        store: PersistedStore,
        action_log: AdminActionLog | None = None,
        content_filter: ContentFilter | None = None,
    ):
        self.store = store
        self.action_log = action_log or AdminActionLog(store)
        self.content_filter = content_filter or ContentFilter(store)

    def scan(self, message: dict[str, Any]) -> bool:
        """Whether a stored message is a flagging candidate."""
        return contains_off_platform_contact(message.get("content"))

    def flagged_messages(self) -> list[dict[str, Any]]:
        """Messages explicitly flagged or matching the off-platform predicate."""
        return [
            m for m in self.store.get(MESSAGES_KEY, [])
            if m.get("flagged") or self.scan(m)
        ]

    @counted("moderation_flags_total")
    def flag(self, message_id: str, reason: str, admin_id: str) -> dict[str, Any]:
        """
        Mark a message as flagged.

        Raises:
            MessageNotFoundError: If no message has this id
            StorageWriteError: If the flag cannot be persisted
        """
        flagged: dict[str, Any] = {}

        def apply(messages: list) -> list:
            for message in messages:
                if message.get("id") == message_id:
                    message.update({
                        "flagged": True,
                        "flagReason": reason,
                        "flaggedBy": admin_id,
                        "flaggedAt": utc_now_iso(),
                    })
                    flagged.update(message)
                    return messages
            raise MessageNotFoundError(message_id)

        committed, _ = self.store.update(MESSAGES_KEY, apply, [])
        if not committed:
            raise StorageWriteError(f"Could not persist flag on message {message_id}")

        self.action_log.log("message_flagged", admin_id, {
            "messageId": message_id,
            "reason": reason,
            "content": (flagged.get("content") or "")[:100],
        })
        return flagged

    def delete(self, message_id: str, admin_id: str) -> dict[str, Any]:
        """
        Remove a message entirely.

        Raises:
            MessageNotFoundError: If no message has this id
            StorageWriteError: If the deletion cannot be persisted
        """
        removed: dict[str, Any] = {}

        def apply(messages: list) -> list:
            for index, message in enumerate(messages):
                if message.get("id") == message_id:
                    removed.update(messages.pop(index))
                    return messages
            raise MessageNotFoundError(message_id)

        committed, _ = self.store.update(MESSAGES_KEY, apply, [])
        if not committed:
            raise StorageWriteError(f"Could not persist deletion of message {message_id}")

        metrics.increment("moderation_deletions_total")
        self.action_log.log("message_deleted", admin_id, {
            "messageId": message_id,
            "content": (removed.get("content") or "")[:100],
            "senderId": removed.get("senderId") or removed.get("fromId"),
        })
        return removed
