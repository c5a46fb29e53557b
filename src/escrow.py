"""
VoiceCast - Escrow Payment Ledger

Records client payments held on behalf of talent until project approval.

State machine:
    pending --capture--> held --release--> released
                         held --dispute--> disputed
                         held --refund---> refunded

Transitions only move forward. Disputed and refunded payments are terminal;
no resolution workflow exists beyond recording them. Records accumulate under
the ``escrow_payments`` key and are never deleted by the ledger.

Failure semantics:
- There is no rollback or reconciliation: a process that dies between
  capture and release leaves the payment held.
- Losing a payment record is never silent. If the store cannot commit a
  write even after cleanup, StorageWriteError is raised.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from config import PaymentConfig
from monitoring import metrics
from payment_gateway import PaymentGateway
from records import (
    SCHEMA_VERSION,
    RecordValidationError,
    require_fields,
    utc_now_iso,
)
from storage import PersistedStore, StorageWriteError

logger = logging.getLogger(__name__)

STORAGE_KEY = "escrow_payments"


class EscrowStatus(Enum):
    """Lifecycle states of an escrow payment."""
    PENDING = "pending"      # Order created, funds not yet captured
    HELD = "held"            # Funds captured and held by the platform
    RELEASED = "released"    # Paid out to talent
    DISPUTED = "disputed"    # Frozen pending an out-of-band resolution
    REFUNDED = "refunded"    # Returned to client


# Statuses written by earlier versions of the marketplace
LEGACY_STATUS_ALIASES = {"funded": EscrowStatus.HELD}

ALLOWED_TRANSITIONS: dict[EscrowStatus, frozenset[EscrowStatus]] = {
    EscrowStatus.PENDING: frozenset({EscrowStatus.HELD}),
    EscrowStatus.HELD: frozenset({
        EscrowStatus.RELEASED,
        EscrowStatus.DISPUTED,
        EscrowStatus.REFUNDED,
    }),
    EscrowStatus.RELEASED: frozenset(),
    EscrowStatus.DISPUTED: frozenset(),
    EscrowStatus.REFUNDED: frozenset(),
}


class EscrowError(Exception):
    """Base class for escrow ledger errors."""
    pass


class EscrowValidationError(EscrowError):
    """Raised when escrow input is invalid."""
    pass


class InvalidEscrowTransition(EscrowError):
    """Raised when a payment cannot move to the requested status."""

    def __init__(self, payment_id: str, current: EscrowStatus, target: EscrowStatus):
        super().__init__(
            f"Escrow {payment_id} cannot move from {current.value} to {target.value}"
        )
        self.payment_id = payment_id
        self.current = current
        self.target = target


@dataclass
class EscrowPayment:
    """A single escrow payment as stored in ``escrow_payments``."""
    id: str
    amount: float
    currency: str
    client_id: str
    talent_id: str
    project_id: str
    status: EscrowStatus
    created_at: str
    description: str = ""
    platform_fee: float = 0.0
    talent_receives: float = 0.0
    held_at: str | None = None
    released_at: str | None = None
    payee_email: str | None = None
    payout_id: str | None = None
    disputed_at: str | None = None
    dispute_reason: str | None = None
    refunded_at: str | None = None
    refund_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted camelCase layout."""
        return {
            "schemaVersion": SCHEMA_VERSION,
            "id": self.id,
            "amount": self.amount,
            "currency": self.currency,
            "clientId": self.client_id,
            "talentId": self.talent_id,
            "projectId": self.project_id,
            "description": self.description,
            "status": self.status.value,
            "createdAt": self.created_at,
            "platformFee": self.platform_fee,
            "talentReceives": self.talent_receives,
            "heldAt": self.held_at,
            "releasedAt": self.released_at,
            "payeeEmail": self.payee_email,
            "payoutId": self.payout_id,
            "disputedAt": self.disputed_at,
            "disputeReason": self.dispute_reason,
            "refundedAt": self.refunded_at,
            "refundReason": self.refund_reason,
        }

    @classmethod
    def from_dict(cls, data: Any, fee_rate: float = 0.05) -> "EscrowPayment":
        """
        Validate and decode a stored record, upgrading legacy shapes.

        Legacy records use status ``funded`` with ``fundedAt`` for held
        payments, and may lack the fee breakdown.

        Raises:
            RecordValidationError: If the record is malformed
        """
        require_fields(
            "escrow",
            data,
            ("id", "amount", "clientId", "talentId", "projectId", "status", "createdAt"),
        )

        raw_status = data["status"]
        if raw_status in LEGACY_STATUS_ALIASES:
            status = LEGACY_STATUS_ALIASES[raw_status]
        else:
            try:
                status = EscrowStatus(raw_status)
            except ValueError:
                raise RecordValidationError("escrow", data["id"], f"unknown status {raw_status!r}")

        amount = data["amount"]
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise RecordValidationError("escrow", data["id"], "amount must be a number")

        platform_fee = data.get("platformFee")
        if platform_fee is None:
            platform_fee = round(amount * fee_rate, 2)
        talent_receives = data.get("talentReceives")
        if talent_receives is None:
            talent_receives = round(amount - platform_fee, 2)

        return cls(
            id=data["id"],
            amount=amount,
            currency=data.get("currency", "USD"),
            client_id=data["clientId"],
            talent_id=data["talentId"],
            project_id=data["projectId"],
            status=status,
            created_at=data["createdAt"],
            description=data.get("description", ""),
            platform_fee=platform_fee,
            talent_receives=talent_receives,
            held_at=data.get("heldAt") or data.get("fundedAt"),
            released_at=data.get("releasedAt"),
            payee_email=data.get("payeeEmail"),
            payout_id=data.get("payoutId"),
            disputed_at=data.get("disputedAt"),
            dispute_reason=data.get("disputeReason"),
            refunded_at=data.get("refundedAt"),
            refund_reason=data.get("refundReason"),
        )


class EscrowLedger:
    """
    Escrow payment ledger over the persisted store.

    All writes are read-modify-write cycles on the whole ``escrow_payments``
    list, serialized by the store lock.
    """

    def __init__(
        self,
        store: PersistedStore,
        gateway: PaymentGateway | None = None,
        fee_rate: float | None = None,
    ):
        self.store = store
        self.gateway = gateway or PaymentGateway()
        self.fee_rate = fee_rate if fee_rate is not None else PaymentConfig.from_env().platform_fee_rate

    # ==================== Reads ====================

    def _load(self) -> list[EscrowPayment]:
        return [
            EscrowPayment.from_dict(record, self.fee_rate)
            for record in self.store.get(STORAGE_KEY, [])
        ]

    def all(self) -> list[EscrowPayment]:
        return self._load()

    def get(self, payment_id: str) -> EscrowPayment | None:
        for payment in self._load():
            if payment.id == payment_id:
                return payment
        return None

    def query(self, user_id: str, role: str) -> list[EscrowPayment]:
        """
        Payments where the caller is the given party.

        Args:
            user_id: Client or talent id
            role: "client" or "talent"
        """
        if role == "client":
            matches = [p for p in self._load() if p.client_id == user_id]
        elif role == "talent":
            matches = [p for p in self._load() if p.talent_id == user_id]
        else:
            raise ValueError(f"Unknown escrow role: {role!r}")
        return sorted(matches, key=lambda p: p.created_at)

    def project_escrows(self, project_id: str) -> list[EscrowPayment]:
        return [p for p in self._load() if p.project_id == project_id]

    def calculate_fees(self, amount: float) -> dict[str, float]:
        """Platform fee breakdown for a payment amount."""
        platform_fee = round(amount * self.fee_rate, 2)
        return {
            "platformFee": platform_fee,
            "talentReceives": round(amount - platform_fee, 2),
            "total": amount,
        }

    # ==================== Writes ====================

    def create(
        self,
        amount: float,
        currency: str,
        client_id: str,
        talent_id: str,
        project_id: str,
        description: str = "",
    ) -> EscrowPayment:
        """
        Create a pending escrow payment.

        Raises:
            EscrowValidationError: If the amount or parties are invalid
            StorageWriteError: If the record cannot be persisted
        """
        if (
            isinstance(amount, bool)
            or not isinstance(amount, (int, float))
            or not math.isfinite(amount)
            or amount <= 0
        ):
            raise EscrowValidationError(f"Escrow amount must be a positive number, got {amount!r}")
        if not currency or len(currency) != 3:
            raise EscrowValidationError(f"Currency must be a 3-letter code, got {currency!r}")
        for name, value in (("client_id", client_id), ("talent_id", talent_id), ("project_id", project_id)):
            if not value:
                raise EscrowValidationError(f"{name} is required")

        order_id = self.gateway.create_order(amount, currency.upper())
        fees = self.calculate_fees(amount)
        payment = EscrowPayment(
            id=order_id,
            amount=amount,
            currency=currency.upper(),
            client_id=client_id,
            talent_id=talent_id,
            project_id=project_id,
            status=EscrowStatus.PENDING,
            created_at=utc_now_iso(),
            description=description,
            platform_fee=fees["platformFee"],
            talent_receives=fees["talentReceives"],
        )

        def append(records: list) -> list:
            records.append(payment.to_dict())
            return records

        committed, _ = self.store.update(STORAGE_KEY, append, [])
        if not committed:
            raise StorageWriteError(f"Could not persist escrow {payment.id}")

        metrics.increment("escrow_transitions_total", labels={"to": EscrowStatus.PENDING.value})
        logger.info(
            f"Created escrow {payment.id}: {amount:.2f} {payment.currency}",
            extra={"client_id": client_id, "talent_id": talent_id, "project_id": project_id},
        )
        return payment

    def capture(self, payment_id: str) -> EscrowPayment | None:
        """
        Move a payment from pending to held.

        Returns None for an unknown id. Capturing a payment that is no
        longer pending is a no-op that returns it unchanged, including when
        another capture commits while this one is waiting on the gateway.
        """
        payment = self.get(payment_id)
        if payment is None:
            logger.warning(f"Capture requested for unknown escrow {payment_id}")
            return None
        if payment.status != EscrowStatus.PENDING:
            logger.info(f"Escrow {payment_id} already {payment.status.value}; capture ignored")
            return payment

        self.gateway.capture_order(payment_id)
        captured, changed = self._transition(
            payment_id,
            EscrowStatus.HELD,
            unchanged_from=frozenset(EscrowStatus) - {EscrowStatus.PENDING},
            held_at=utc_now_iso(),
        )
        if not changed:
            logger.info(f"Escrow {payment_id} captured concurrently; capture ignored")
        return captured

    def release(self, payment_id: str, payee_email: str) -> EscrowPayment | None:
        """
        Pay a held payment out to the talent.

        The released status is committed before the payout is sent, so of
        two overlapping releases only the one that commits pays out. If the
        gateway rejects the payout the payment goes back to held.

        Returns None for an unknown id; releasing an already released
        payment returns it unchanged.

        Raises:
            EscrowValidationError: If no payee email is given
            InvalidEscrowTransition: If the payment is not held
        """
        payment = self.get(payment_id)
        if payment is None:
            logger.warning(f"Release requested for unknown escrow {payment_id}")
            return None
        if payment.status == EscrowStatus.RELEASED:
            return payment
        if payment.status != EscrowStatus.HELD:
            raise InvalidEscrowTransition(payment_id, payment.status, EscrowStatus.RELEASED)
        if not payee_email:
            raise EscrowValidationError("Release requires a payee email")

        released, changed = self._transition(
            payment_id,
            EscrowStatus.RELEASED,
            unchanged_from=frozenset({EscrowStatus.RELEASED}),
            released_at=utc_now_iso(),
            payee_email=payee_email,
        )
        if not changed:
            return released

        try:
            payout_id = self.gateway.create_payout(
                payee_email, released.talent_receives, released.currency
            )
        except Exception:
            logger.error(f"Payout for escrow {payment_id} failed; returning it to held")
            self._patch(
                payment_id,
                status=EscrowStatus.HELD,
                released_at=None,
                payee_email=None,
            )
            raise

        return self._patch(payment_id, payout_id=payout_id)

    def dispute(self, payment_id: str, reason: str = "") -> EscrowPayment | None:
        """Freeze a held payment as disputed."""
        if self.get(payment_id) is None:
            return None
        disputed, _ = self._transition(
            payment_id,
            EscrowStatus.DISPUTED,
            disputed_at=utc_now_iso(),
            dispute_reason=reason,
        )
        return disputed

    def refund(self, payment_id: str, reason: str = "") -> EscrowPayment | None:
        """Return a held payment to the client."""
        if self.get(payment_id) is None:
            return None
        refunded, _ = self._transition(
            payment_id,
            EscrowStatus.REFUNDED,
            refunded_at=utc_now_iso(),
            refund_reason=reason,
        )
        return refunded

    def _transition(
        self,
        payment_id: str,
        target: EscrowStatus,
        unchanged_from: frozenset[EscrowStatus] = frozenset(),
        **changes,
    ) -> tuple[EscrowPayment, bool]:
        """
        Apply a status transition inside a single read-modify-write cycle.

        The current status is re-checked under the store lock. A record
        already in one of ``unchanged_from`` is returned as stored with
        ``False``; any other disallowed move raises InvalidEscrowTransition.
        """
        updated: dict[str, Any] = {}

        def apply(records: list) -> list:
            for index, record in enumerate(records):
                if record.get("id") != payment_id:
                    continue
                payment = EscrowPayment.from_dict(record, self.fee_rate)
                updated["payment"] = payment
                if payment.status in unchanged_from:
                    return records
                if target not in ALLOWED_TRANSITIONS[payment.status]:
                    raise InvalidEscrowTransition(payment_id, payment.status, target)
                updated["from"] = payment.status
                payment.status = target
                for name, value in changes.items():
                    setattr(payment, name, value)
                records[index] = payment.to_dict()
                return records
            raise EscrowError(f"Escrow {payment_id} disappeared during update")

        committed, _ = self.store.update(STORAGE_KEY, apply, [])
        if not committed:
            raise StorageWriteError(f"Could not persist escrow {payment_id} -> {target.value}")

        if "from" not in updated:
            return updated["payment"], False

        metrics.increment("escrow_transitions_total", labels={"to": target.value})
        logger.info(
            f"Escrow {payment_id}: {updated['from'].value} -> {target.value}"
        )
        return updated["payment"], True

    def _patch(self, payment_id: str, **changes) -> EscrowPayment:
        """Set fields on a stored payment without a status check."""
        updated: dict[str, Any] = {}

        def apply(records: list) -> list:
            for index, record in enumerate(records):
                if record.get("id") != payment_id:
                    continue
                payment = EscrowPayment.from_dict(record, self.fee_rate)
                for name, value in changes.items():
                    setattr(payment, name, value)
                records[index] = payment.to_dict()
                updated["payment"] = payment
                return records
            raise EscrowError(f"Escrow {payment_id} disappeared during update")

        committed, _ = self.store.update(STORAGE_KEY, apply, [])
        if not committed:
            raise StorageWriteError(f"Could not persist escrow {payment_id}")
        return updated["payment"]
