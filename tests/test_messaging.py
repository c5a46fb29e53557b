"""
Tests for message delivery and the pending message queue.
"""

import os
import sys
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest
import requests

from circuit_breaker import CircuitBreaker
from config import MessagingConfig
from messaging import (
    CIRCUIT_OPEN_ERROR,
    MESSAGES_KEY,
    PENDING_KEY,
    SENT_KEY,
    DeliveryClient,
    MessageCenter,
    OutboundMessage,
    PendingMessage,
    PendingMessageQueue,
)
from monitoring import metrics
from notifications import NotificationService, NotificationType

ENDPOINTS = ("/api/contact/talent", "/api/messages/send", "/api/contact")


def make_response(status_code: int, body=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


def make_message(**overrides) -> OutboundMessage:
    fields = {
        "from_id": "client_1",
        "from_name": "Casey Client",
        "to_id": "talent_1",
        "to_name": "Taylor Talent",
        "subject": "Audiobook narration",
        "content": "Would you be available next week?",
    }
    fields.update(overrides)
    return OutboundMessage(**fields)


@pytest.fixture
def session():
    session = MagicMock()
    session.post.return_value = make_response(500)
    return session


@pytest.fixture
def circuit():
    return CircuitBreaker("test_messaging", failure_threshold=100, recovery_timeout=30)


@pytest.fixture
def client(session, circuit):
    config = MessagingConfig(base_url="http://messaging.test/", endpoints=ENDPOINTS, max_retries=3)
    return DeliveryClient(config, session=session, circuit=circuit)


@pytest.fixture
def queue(store, client):
    return PendingMessageQueue(store, client)


@pytest.fixture
def center(store, client, queue):
    return MessageCenter(store, client, queue, NotificationService(store))


# ============================================================
# Delivery Client
# ============================================================


class TestDeliveryClient:
    """Tests for endpoint probing."""

    def test_first_success_wins(self, client, session):
        session.post.return_value = make_response(201, {"id": "remote_1"})

        result = client.deliver(make_message(), auth_token="tok")

        assert result.success is True
        assert result.endpoint == "/api/contact/talent"
        assert result.response == {"id": "remote_1"}
        assert session.post.call_count == 1

        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == "http://messaging.test/api/contact/talent"
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["headers"]["X-User-ID"] == "client_1"
        assert kwargs["json"]["message"] == "Would you be available next week?"
        assert kwargs["json"]["platform"] == "VoiceCast"

    def test_skips_404_endpoints(self, client, session):
        session.post.side_effect = [make_response(404), make_response(200)]

        result = client.deliver(make_message())

        assert result.success is True
        assert result.endpoint == "/api/messages/send"

    def test_all_endpoints_fail(self, client, session, circuit):
        result = client.deliver(make_message())

        assert result.success is False
        assert result.status_code == 500
        assert "HTTP 500" in result.error
        assert session.post.call_count == len(ENDPOINTS)
        assert circuit.failure_count == 1

    def test_network_errors_do_not_raise(self, client, session):
        session.post.side_effect = requests.ConnectionError("refused")

        result = client.deliver(make_message())

        assert result.success is False
        assert "refused" in result.error

    def test_no_token_no_authorization_header(self, client, session):
        session.post.return_value = make_response(200)
        client.deliver(make_message())

        assert "Authorization" not in session.post.call_args.kwargs["headers"]

    def test_open_circuit_short_circuits(self, session):
        circuit = CircuitBreaker("tripped", failure_threshold=1, recovery_timeout=60)
        circuit.record_failure()
        client = DeliveryClient(MessagingConfig(endpoints=ENDPOINTS), session=session, circuit=circuit)

        result = client.deliver(make_message())

        assert result.success is False
        assert result.error == CIRCUIT_OPEN_ERROR
        session.post.assert_not_called()
        assert metrics.get_counter("message_delivery_total", labels={"outcome": "circuit_open"}) == 1

    def test_success_resets_failures(self, client, session, circuit):
        client.deliver(make_message())
        session.post.return_value = make_response(200)
        client.deliver(make_message())

        assert circuit.failure_count == 0


# ============================================================
# Message Center
# ============================================================


class TestMessageCenter:
    """Tests for send with local fallback."""

    def test_delivered_message_recorded_as_sent(self, center, session, store):
        session.post.return_value = make_response(201, {"id": "remote_42"})

        outcome = center.send(make_message(), auth_token="tok")

        assert outcome.delivered is True
        assert outcome.endpoint == "/api/contact/talent"
        assert outcome.message["id"] == "remote_42"
        assert store.get(SENT_KEY)[0]["status"] == "sent"
        assert store.get(PENDING_KEY, []) == []

    def test_failed_send_queues_locally(self, center, store):
        outcome = center.send(make_message())

        assert outcome.delivered is False
        assert "HTTP 500" in outcome.error

        pending = store.get(PENDING_KEY)
        assert len(pending) == 1
        assert pending[0]["retryCount"] == 0
        assert pending[0]["status"] == "pending_backend"
        assert pending[0]["localOnly"] is True

        assert store.get(MESSAGES_KEY)[0]["id"] == pending[0]["id"]
        assert store.get(SENT_KEY)[0]["id"] == pending[0]["id"]

    def test_failed_send_notifies_talent(self, center, store):
        outcome = center.send(make_message())

        notifications = NotificationService(store).for_talent("talent_1")
        assert len(notifications) == 1
        assert notifications[0].type == NotificationType.MESSAGE
        assert notifications[0].message_id == outcome.message["id"]
        assert notifications[0].client_name == "Casey Client"

    def test_message_to_client_does_not_notify(self, center, store):
        center.send(make_message(to_type="client"))
        assert NotificationService(store).for_talent("talent_1") == []

    def test_missing_content_rejected(self, center, session):
        with pytest.raises(ValueError):
            center.send(make_message(content=""))
        session.post.assert_not_called()


# ============================================================
# Pending Queue
# ============================================================


class TestPendingQueue:
    """Tests for the retry sweep."""

    def test_retry_ceiling(self, center, queue, session, store):
        """
        A message that never gets through is retried three times and then
        kept without further attempts.
        """
        center.send(make_message())
        assert queue.pending()[0].retry_count == 0

        for expected in (1, 2, 3):
            report = queue.sweep()
            assert report.attempted == 1
            assert report.failed == 1
            assert queue.pending()[0].retry_count == expected

        calls_before = session.post.call_count
        report = queue.sweep()

        assert report.attempted == 0
        assert report.abandoned == 1
        assert report.remaining == 1
        assert session.post.call_count == calls_before
        assert len(queue.abandoned()) == 1

    def test_successful_retry_removes_and_marks_sent(self, center, queue, session, store):
        outcome = center.send(make_message())
        session.post.return_value = make_response(200)

        report = queue.sweep()

        assert report.delivered == 1
        assert report.delivered_ids == [outcome.message["id"]]
        assert report.remaining == 0
        assert store.get(PENDING_KEY) == []
        for key in (MESSAGES_KEY, SENT_KEY):
            record = store.get(key)[0]
            assert record["status"] == "sent"
            assert record["localOnly"] is False
            assert "backendError" not in record

    def test_failure_records_error_and_attempt(self, center, queue, store):
        center.send(make_message())
        first_attempt = store.get(PENDING_KEY)[0]["lastAttempt"]

        queue.sweep()

        record = store.get(PENDING_KEY)[0]
        assert "HTTP 500" in record["backendError"]
        assert record["lastAttempt"] >= first_attempt

    def test_open_circuit_skips_without_spending_retries(self, store, session):
        circuit = CircuitBreaker("sweep_circuit", failure_threshold=1, recovery_timeout=60)
        client = DeliveryClient(MessagingConfig(endpoints=ENDPOINTS), session=session, circuit=circuit)
        queue = PendingMessageQueue(store, client, max_retries=3)
        queue.enqueue(make_message(), "offline")
        circuit.record_failure()

        report = queue.sweep()

        assert report.skipped == 1
        assert report.attempted == 0
        assert queue.pending()[0].retry_count == 0

    def test_sweep_uses_stored_auth_token(self, queue, session, store):
        store.set("authToken", "stored-token")
        queue.enqueue(make_message(), "offline")
        session.post.return_value = make_response(200)

        queue.sweep()

        headers = session.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer stored-token"

    def test_sweep_updates_gauge(self, queue):
        queue.enqueue(make_message(), "offline")
        queue.sweep()

        assert metrics.get_gauge("pending_messages") == 1
        assert metrics.get_counter("pending_sweep_total") == 1

    def test_empty_sweep(self, queue):
        report = queue.sweep()
        assert report.to_dict() == {
            "attempted": 0,
            "delivered": 0,
            "failed": 0,
            "abandoned": 0,
            "skipped": 0,
            "remaining": 0,
            "deliveredIds": [],
        }


class TestPendingMessageRecord:
    def test_legacy_message_field(self):
        """Test older records with the body under "message" still load."""
        pending = PendingMessage.from_dict({
            "id": "msg_1",
            "fromId": "client_1",
            "toId": "talent_1",
            "timestamp": "2024-01-01T00:00:00Z",
            "message": "Old body",
        })

        assert pending.content == "Old body"
        assert pending.retry_count == 0
        assert pending.to_outbound().content == "Old body"
