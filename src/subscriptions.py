"""
VoiceCast - Subscriptions

Simulated PayPal billing subscriptions for premium talent and client plans.
Records live under ``paypal_subscriptions``.

    APPROVAL_PENDING --activate--> ACTIVE --cancel--> CANCELLED
    APPROVAL_PENDING --cancel--> CANCELLED
"""

import logging
from enum import Enum
from typing import Any

from payment_gateway import PaymentGateway
from records import SCHEMA_VERSION, RecordValidationError, require_fields, utc_now_iso
from storage import PersistedStore, StorageWriteError

logger = logging.getLogger(__name__)

STORAGE_KEY = "paypal_subscriptions"


class SubscriptionStatus(Enum):
    """PayPal subscription states."""
    APPROVAL_PENDING = "APPROVAL_PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


class InvalidSubscriptionTransition(Exception):
    """Raised when a subscription cannot move to the requested status."""
    pass


_ALLOWED = {
    SubscriptionStatus.ACTIVE: {SubscriptionStatus.APPROVAL_PENDING},
    SubscriptionStatus.CANCELLED: {SubscriptionStatus.APPROVAL_PENDING, SubscriptionStatus.ACTIVE},
}


def _validate(record: Any) -> dict[str, Any]:
    require_fields("subscription", record, ("id", "planId", "userId", "status", "createdAt"))
    try:
        SubscriptionStatus(record["status"])
    except ValueError:
        raise RecordValidationError("subscription", record["id"], f"unknown status {record['status']!r}")
    return record


class SubscriptionService:
    """Create, activate and cancel billing subscriptions."""

    def __init__(self, store: PersistedStore, gateway: PaymentGateway | None = None):
        self.store = store
        self.gateway = gateway or PaymentGateway()

    def _load(self) -> list[dict[str, Any]]:
        return [_validate(record) for record in self.store.get(STORAGE_KEY, [])]

    def get(self, subscription_id: str) -> dict[str, Any] | None:
        for record in self._load():
            if record["id"] == subscription_id:
                return record
        return None

    def for_user(self, user_id: str) -> list[dict[str, Any]]:
        return [record for record in self._load() if record["userId"] == user_id]

    def create(
        self,
        plan_id: str,
        user_id: str,
        return_url: str,
        cancel_url: str,
    ) -> dict[str, Any]:
        """Create a subscription awaiting buyer approval."""
        if not plan_id or not user_id:
            raise ValueError("plan_id and user_id are required")

        subscription_id, approval_url = self.gateway.create_subscription(plan_id)
        record = {
            "schemaVersion": SCHEMA_VERSION,
            "id": subscription_id,
            "planId": plan_id,
            "userId": user_id,
            "status": SubscriptionStatus.APPROVAL_PENDING.value,
            "approvalUrl": approval_url,
            "returnUrl": return_url,
            "cancelUrl": cancel_url,
            "createdAt": utc_now_iso(),
        }

        committed, _ = self.store.update(STORAGE_KEY, lambda records: records + [record], [])
        if not committed:
            raise StorageWriteError(f"Could not persist subscription {subscription_id}")
        return record

    def activate(self, subscription_id: str) -> dict[str, Any] | None:
        return self._transition(
            subscription_id, SubscriptionStatus.ACTIVE, activatedAt=utc_now_iso()
        )

    def cancel(self, subscription_id: str, reason: str = "") -> dict[str, Any] | None:
        return self._transition(
            subscription_id,
            SubscriptionStatus.CANCELLED,
            cancelledAt=utc_now_iso(),
            cancelReason=reason,
        )

    def _transition(
        self, subscription_id: str, target: SubscriptionStatus, **changes
    ) -> dict[str, Any] | None:
        if self.get(subscription_id) is None:
            logger.warning(f"Subscription {subscription_id} not found")
            return None

        result: dict[str, Any] = {}

        def apply(records: list) -> list:
            for record in records:
                if record.get("id") != subscription_id:
                    continue
                current = SubscriptionStatus(record["status"])
                if current not in _ALLOWED[target]:
                    raise InvalidSubscriptionTransition(
                        f"Subscription {subscription_id} cannot move from "
                        f"{current.value} to {target.value}"
                    )
                record.update(changes, status=target.value, schemaVersion=SCHEMA_VERSION)
                result.update(record)
            return records

        committed, _ = self.store.update(STORAGE_KEY, apply, [])
        if not committed:
            raise StorageWriteError(f"Could not persist subscription {subscription_id}")

        logger.info(f"Subscription {subscription_id} -> {target.value}")
        return result
