"""
Tests for the escrow payment ledger.
"""

import os
import sys
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from escrow import (
    STORAGE_KEY,
    EscrowLedger,
    EscrowPayment,
    EscrowStatus,
    EscrowValidationError,
    InvalidEscrowTransition,
)
from monitoring import metrics
from payment_gateway import PaymentGateway, PaymentGatewayError
from records import RecordValidationError, parse_timestamp
from storage import MemoryStore, PersistedStore, StorageWriteError


@pytest.fixture
def ledger(store, gateway):
    return EscrowLedger(store, gateway, fee_rate=0.05)


@pytest.fixture
def held_payment(ledger):
    payment = ledger.create(200, "USD", "client_1", "talent_1", "project_1")
    return ledger.capture(payment.id)


# ============================================================
# Lifecycle
# ============================================================


class TestEscrowLifecycle:
    """Tests for the pending -> held -> released path."""

    def test_full_lifecycle(self, ledger):
        """Create, capture and release a payment."""
        payment = ledger.create(100, "USD", "client_1", "talent_1", "project_1")
        assert payment.status == EscrowStatus.PENDING
        assert payment.id.startswith("PAYPAL_ORDER_")

        held = ledger.capture(payment.id)
        assert held.status == EscrowStatus.HELD
        assert held.held_at is not None

        released = ledger.release(payment.id, "talent@example.com")
        assert released.status == EscrowStatus.RELEASED
        assert released.released_at is not None
        assert released.payee_email == "talent@example.com"
        assert released.payout_id.startswith("PAYOUT_")

        stored = ledger.get(payment.id)
        assert stored.status == EscrowStatus.RELEASED
        assert stored.released_at == released.released_at
        assert parse_timestamp(stored.released_at) >= parse_timestamp(stored.created_at)

    def test_fee_breakdown_recorded(self, ledger):
        payment = ledger.create(100, "usd", "client_1", "talent_1", "project_1")

        assert payment.currency == "USD"
        assert payment.platform_fee == 5.0
        assert payment.talent_receives == 95.0

    def test_payout_uses_talent_share(self, store):
        """Test the payout amount excludes the platform fee."""
        gateway = MagicMock()
        gateway.create_order.return_value = "PAYPAL_ORDER_1_ABC"
        gateway.create_payout.return_value = "PAYOUT_1_ABC"
        ledger = EscrowLedger(store, gateway, fee_rate=0.1)

        payment = ledger.create(50, "EUR", "client_1", "talent_1", "project_1")
        ledger.capture(payment.id)
        ledger.release(payment.id, "talent@example.com")

        gateway.capture_order.assert_called_once_with("PAYPAL_ORDER_1_ABC")
        gateway.create_payout.assert_called_once_with("talent@example.com", 45.0, "EUR")

    def test_transitions_counted(self, ledger):
        payment = ledger.create(100, "USD", "client_1", "talent_1", "project_1")
        ledger.capture(payment.id)

        assert metrics.get_counter("escrow_transitions_total", labels={"to": "pending"}) == 1
        assert metrics.get_counter("escrow_transitions_total", labels={"to": "held"}) == 1

    def test_records_persisted_camel_case(self, ledger, store):
        payment = ledger.create(100, "USD", "client_1", "talent_1", "project_1", "Narration")
        record = store.get(STORAGE_KEY)[0]

        assert record["id"] == payment.id
        assert record["clientId"] == "client_1"
        assert record["talentId"] == "talent_1"
        assert record["projectId"] == "project_1"
        assert record["description"] == "Narration"
        assert record["status"] == "pending"
        assert record["schemaVersion"] == 1


class TestEscrowTransitions:
    """Tests for transition guards."""

    def test_capture_unknown_returns_none(self, ledger):
        assert ledger.capture("PAYPAL_ORDER_missing") is None

    def test_capture_twice_is_noop(self, ledger, held_payment):
        again = ledger.capture(held_payment.id)
        assert again.status == EscrowStatus.HELD
        assert again.held_at == held_payment.held_at

    def test_release_unknown_returns_none(self, ledger):
        assert ledger.release("PAYPAL_ORDER_missing", "a@example.com") is None

    def test_release_pending_rejected(self, ledger):
        payment = ledger.create(100, "USD", "client_1", "talent_1", "project_1")

        with pytest.raises(InvalidEscrowTransition) as exc_info:
            ledger.release(payment.id, "talent@example.com")

        assert exc_info.value.current == EscrowStatus.PENDING
        assert exc_info.value.target == EscrowStatus.RELEASED
        assert ledger.get(payment.id).status == EscrowStatus.PENDING

    def test_release_requires_email(self, ledger, held_payment):
        with pytest.raises(EscrowValidationError):
            ledger.release(held_payment.id, "")

    def test_release_twice_returns_unchanged(self, ledger, held_payment):
        first = ledger.release(held_payment.id, "talent@example.com")
        second = ledger.release(held_payment.id, "other@example.com")

        assert second.payee_email == "talent@example.com"
        assert second.payout_id == first.payout_id

    def test_dispute_held(self, ledger, held_payment):
        disputed = ledger.dispute(held_payment.id, "Audio never delivered")

        assert disputed.status == EscrowStatus.DISPUTED
        assert disputed.dispute_reason == "Audio never delivered"
        assert disputed.disputed_at is not None

    def test_refund_held(self, ledger, held_payment):
        refunded = ledger.refund(held_payment.id, "Project cancelled")

        assert refunded.status == EscrowStatus.REFUNDED
        assert refunded.refund_reason == "Project cancelled"

    def test_disputed_is_terminal(self, ledger, held_payment):
        ledger.dispute(held_payment.id)

        with pytest.raises(InvalidEscrowTransition):
            ledger.refund(held_payment.id)
        with pytest.raises(InvalidEscrowTransition):
            ledger.release(held_payment.id, "talent@example.com")

    def test_dispute_pending_rejected(self, ledger):
        payment = ledger.create(100, "USD", "client_1", "talent_1", "project_1")
        with pytest.raises(InvalidEscrowTransition):
            ledger.dispute(payment.id)

    def test_dispute_and_refund_unknown(self, ledger):
        assert ledger.dispute("missing") is None
        assert ledger.refund("missing") is None


# ============================================================
# Overlapping Calls
# ============================================================


class ReentrantGateway(PaymentGateway):
    """Gateway that runs a one-shot hook from inside capture or payout calls."""

    def __init__(self, config):
        super().__init__(config, sleep=lambda seconds: None)
        self.on_capture = None
        self.on_payout = None
        self.payouts = []

    def capture_order(self, order_id):
        hook, self.on_capture = self.on_capture, None
        if hook:
            hook()
        return super().capture_order(order_id)

    def create_payout(self, email, amount, currency):
        hook, self.on_payout = self.on_payout, None
        if hook:
            hook()
        payout_id = super().create_payout(email, amount, currency)
        self.payouts.append(payout_id)
        return payout_id


class TestOverlappingCalls:
    """Tests for captures and releases that interleave with each other."""

    @pytest.fixture
    def reentrant(self, payment_config):
        return ReentrantGateway(payment_config)

    @pytest.fixture
    def reentrant_ledger(self, store, reentrant):
        return EscrowLedger(store, reentrant, fee_rate=0.05)

    def test_capture_committed_during_gateway_call(self, reentrant_ledger, reentrant):
        payment = reentrant_ledger.create(100, "USD", "client_1", "talent_1", "project_1")
        inner = []
        reentrant.on_capture = lambda: inner.append(reentrant_ledger.capture(payment.id))

        outer = reentrant_ledger.capture(payment.id)

        assert inner[0].status == EscrowStatus.HELD
        assert outer.status == EscrowStatus.HELD
        assert outer.held_at == inner[0].held_at
        assert metrics.get_counter("escrow_transitions_total", labels={"to": "held"}) == 1

    def test_release_during_payout_pays_once(self, reentrant_ledger, reentrant):
        payment = reentrant_ledger.create(100, "USD", "client_1", "talent_1", "project_1")
        reentrant_ledger.capture(payment.id)
        inner = []
        reentrant.on_payout = lambda: inner.append(
            reentrant_ledger.release(payment.id, "other@example.com")
        )

        released = reentrant_ledger.release(payment.id, "talent@example.com")

        assert len(reentrant.payouts) == 1
        assert inner[0].status == EscrowStatus.RELEASED
        assert released.status == EscrowStatus.RELEASED
        assert released.payee_email == "talent@example.com"
        assert released.payout_id == reentrant.payouts[0]
        assert reentrant_ledger.get(payment.id).payout_id == reentrant.payouts[0]

    def test_failed_payout_returns_payment_to_held(self, store):
        gateway = MagicMock()
        gateway.create_order.return_value = "PAYPAL_ORDER_1_ABC"
        gateway.create_payout.side_effect = PaymentGatewayError("receiver blocked")
        ledger = EscrowLedger(store, gateway, fee_rate=0.05)
        payment = ledger.create(100, "USD", "client_1", "talent_1", "project_1")
        ledger.capture(payment.id)

        with pytest.raises(PaymentGatewayError):
            ledger.release(payment.id, "talent@example.com")

        stored = ledger.get(payment.id)
        assert stored.status == EscrowStatus.HELD
        assert stored.released_at is None
        assert stored.payee_email is None
        assert stored.payout_id is None


# ============================================================
# Validation and Queries
# ============================================================


class TestEscrowValidation:
    """Tests for input validation."""

    @pytest.mark.parametrize("amount", [0, -5, "100", True, None, float("nan"), float("inf")])
    def test_invalid_amount(self, ledger, amount):
        with pytest.raises(EscrowValidationError):
            ledger.create(amount, "USD", "client_1", "talent_1", "project_1")

    def test_invalid_currency(self, ledger):
        with pytest.raises(EscrowValidationError):
            ledger.create(100, "DOLLARS", "client_1", "talent_1", "project_1")

    def test_missing_party(self, ledger):
        with pytest.raises(EscrowValidationError, match="talent_id"):
            ledger.create(100, "USD", "client_1", "", "project_1")

    def test_create_raises_when_store_full(self, gateway):
        """Test a payment that cannot be persisted is never silently lost."""
        store = PersistedStore(MemoryStore(item_limit_bytes=50, total_limit_bytes=100))
        ledger = EscrowLedger(store, gateway, fee_rate=0.05)

        with pytest.raises(StorageWriteError):
            ledger.create(100, "USD", "client_1", "talent_1", "project_1")


class TestEscrowQueries:
    """Tests for reads over the ledger."""

    def test_query_by_role(self, ledger):
        ledger.create(100, "USD", "client_1", "talent_1", "project_1")
        ledger.create(200, "USD", "client_1", "talent_2", "project_2")
        ledger.create(300, "USD", "client_2", "talent_1", "project_3")

        assert len(ledger.query("client_1", "client")) == 2
        assert len(ledger.query("talent_1", "talent")) == 2
        assert ledger.query("nobody", "client") == []

    def test_query_unknown_role(self, ledger):
        with pytest.raises(ValueError):
            ledger.query("client_1", "admin")

    def test_project_escrows(self, ledger):
        ledger.create(100, "USD", "client_1", "talent_1", "project_1")
        ledger.create(100, "USD", "client_1", "talent_1", "project_2")

        assert [p.project_id for p in ledger.project_escrows("project_2")] == ["project_2"]

    def test_calculate_fees(self, ledger):
        assert ledger.calculate_fees(250) == {
            "platformFee": 12.5,
            "talentReceives": 237.5,
            "total": 250,
        }


class TestEscrowRecords:
    """Tests for decoding stored records."""

    def test_legacy_funded_status(self):
        payment = EscrowPayment.from_dict({
            "id": "PAYPAL_ORDER_1",
            "amount": 100,
            "clientId": "c",
            "talentId": "t",
            "projectId": "p",
            "status": "funded",
            "createdAt": "2024-01-01T00:00:00Z",
            "fundedAt": "2024-01-02T00:00:00Z",
        })

        assert payment.status == EscrowStatus.HELD
        assert payment.held_at == "2024-01-02T00:00:00Z"
        assert payment.platform_fee == 5.0
        assert payment.talent_receives == 95.0
        assert payment.currency == "USD"

    def test_unknown_status_rejected(self):
        with pytest.raises(RecordValidationError):
            EscrowPayment.from_dict({
                "id": "x", "amount": 1, "clientId": "c", "talentId": "t",
                "projectId": "p", "status": "lost", "createdAt": "2024-01-01",
            })

    def test_missing_fields_rejected(self):
        with pytest.raises(RecordValidationError, match="missing"):
            EscrowPayment.from_dict({"id": "x", "amount": 1})

    def test_to_dict_round_trip(self, ledger, held_payment):
        decoded = EscrowPayment.from_dict(held_payment.to_dict())
        assert decoded == held_payment
