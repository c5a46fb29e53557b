"""
VoiceCast - Message Delivery and Fallback Queue

Sends client-to-talent messages to the remote messaging API and, when the
API cannot be reached, keeps them locally so the conversation still appears
to work.

Delivery:
- POST the message to each configured endpoint in order; the first 2xx wins
- 404 means "route not deployed here" and is skipped without recording an error
- A circuit breaker short-circuits delivery while the API is down

Fallback queue:
- Undeliverable messages are stored under ``pendingMessages`` with retryCount 0
- ``sweep()`` retries each pending message; failures increment retryCount
- Messages at or past ``max_retries`` are kept but never attempted again

Sends from separate processes are not coordinated, so a message can be
delivered twice if two sweeps overlap.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from circuit_breaker import CircuitBreaker, get_circuit_breaker
from config import MessagingConfig
from monitoring import LoggingContext, metrics, timed
from notifications import NotificationService, NotificationType
from records import SCHEMA_VERSION, generate_id, require_fields, utc_now_iso
from storage import PersistedStore

logger = logging.getLogger(__name__)

PENDING_KEY = "pendingMessages"
MESSAGES_KEY = "messages"
SENT_KEY = "sentMessages"

PENDING_STATUS = "pending_backend"
CIRCUIT_OPEN_ERROR = "circuit open"


# ============================================================
# Records
# ============================================================

@dataclass
class OutboundMessage:
    """A message a user is sending to another user."""
    from_id: str
    from_name: str
    to_id: str
    to_name: str
    subject: str
    content: str
    from_type: str = "client"
    to_type: str = "talent"
    budget: str | None = None
    deadline: str | None = None

    def validate(self) -> None:
        for name in ("from_id", "to_id", "content"):
            if not getattr(self, name):
                raise ValueError(f"{name} is required")


@dataclass
class PendingMessage:
    """A message waiting for the remote API to accept it."""
    id: str
    from_id: str
    from_name: str
    from_type: str
    to_id: str
    to_name: str
    to_type: str
    subject: str
    content: str
    timestamp: str
    retry_count: int = 0
    last_attempt: str | None = None
    backend_error: str | None = None
    budget: str | None = None
    deadline: str | None = None

    @classmethod
    def from_outbound(cls, message: OutboundMessage, error: str | None) -> "PendingMessage":
        now = utc_now_iso()
        return cls(
            id=generate_id("msg"),
            from_id=message.from_id,
            from_name=message.from_name,
            from_type=message.from_type,
            to_id=message.to_id,
            to_name=message.to_name,
            to_type=message.to_type,
            subject=message.subject,
            content=message.content,
            timestamp=now,
            last_attempt=now,
            backend_error=error,
            budget=message.budget,
            deadline=message.deadline,
        )

    def to_outbound(self) -> OutboundMessage:
        return OutboundMessage(
            from_id=self.from_id,
            from_name=self.from_name,
            from_type=self.from_type,
            to_id=self.to_id,
            to_name=self.to_name,
            to_type=self.to_type,
            subject=self.subject,
            content=self.content,
            budget=self.budget,
            deadline=self.deadline,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "id": self.id,
            "fromId": self.from_id,
            "fromName": self.from_name,
            "fromType": self.from_type,
            "toId": self.to_id,
            "toName": self.to_name,
            "toType": self.to_type,
            "subject": self.subject,
            "content": self.content,
            "timestamp": self.timestamp,
            "status": PENDING_STATUS,
            "localOnly": True,
            "retryCount": self.retry_count,
            "lastAttempt": self.last_attempt,
            "backendError": self.backend_error,
            "budget": self.budget,
            "deadline": self.deadline,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PendingMessage":
        require_fields("pending message", data, ("id", "fromId", "toId", "timestamp"))
        return cls(
            id=data["id"],
            from_id=data["fromId"],
            from_name=data.get("fromName", ""),
            from_type=data.get("fromType", "client"),
            to_id=data["toId"],
            to_name=data.get("toName", ""),
            to_type=data.get("toType", "talent"),
            subject=data.get("subject", ""),
            # Older records stored the body under "message"
            content=data.get("content", data.get("message", "")),
            timestamp=data["timestamp"],
            retry_count=int(data.get("retryCount", 0)),
            last_attempt=data.get("lastAttempt"),
            backend_error=data.get("backendError"),
            budget=data.get("budget"),
            deadline=data.get("deadline"),
        )


@dataclass
class DeliveryResult:
    """Outcome of one delivery attempt across the endpoint list."""
    success: bool
    endpoint: str | None = None
    status_code: int | None = None
    error: str | None = None
    response: Any = None


@dataclass
class SweepReport:
    """Counts from one pass over the pending queue."""
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    abandoned: int = 0
    skipped: int = 0
    remaining: int = 0
    delivered_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
            "abandoned": self.abandoned,
            "skipped": self.skipped,
            "remaining": self.remaining,
            "deliveredIds": self.delivered_ids,
        }


@dataclass
class SendOutcome:
    """Result of MessageCenter.send."""
    delivered: bool
    message: dict[str, Any]
    endpoint: str | None = None
    error: str | None = None


# ============================================================
# Remote Delivery
# ============================================================

class DeliveryClient:
    """
    HTTP client for the remote messaging API.

    Never raises for delivery problems; every outcome is a DeliveryResult.
    """

    def __init__(
        self,
        config: MessagingConfig | None = None,
        session: requests.Session | None = None,
        circuit: CircuitBreaker | None = None,
    ):
        self.config = config or MessagingConfig.from_env()
        self.session = session or requests.Session()
        self.circuit = circuit or get_circuit_breaker(
            "messaging_api",
            failure_threshold=self.config.circuit_threshold,
            recovery_timeout=self.config.circuit_timeout,
        )

    def available(self) -> bool:
        """Whether the circuit currently lets deliveries through."""
        return self.circuit.is_allowed()

    def build_payload(self, message: OutboundMessage) -> dict[str, Any]:
        return {
            "fromId": message.from_id,
            "fromName": message.from_name,
            "fromType": message.from_type,
            "toId": message.to_id,
            "toName": message.to_name,
            "toType": message.to_type,
            "subject": message.subject,
            "message": message.content,
            "budget": message.budget,
            "deadline": message.deadline,
            "messageType": "project_inquiry",
            "timestamp": utc_now_iso(),
            "platform": self.config.platform,
        }

    def _headers(self, auth_token: str | None, user_id: str, user_type: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-User-ID": user_id,
            "X-User-Type": user_type,
        }
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        return headers

    @timed("message_delivery_ms")
    def deliver(
        self,
        message: OutboundMessage,
        auth_token: str | None = None,
    ) -> DeliveryResult:
        """Try each endpoint in order until one accepts the message."""
        if not self.circuit.is_allowed():
            metrics.increment("message_delivery_total", labels={"outcome": "circuit_open"})
            return DeliveryResult(success=False, error=CIRCUIT_OPEN_ERROR)

        payload = self.build_payload(message)
        headers = self._headers(auth_token, message.from_id, message.from_type)
        base_url = self.config.base_url.rstrip("/")
        last_error = "No messaging endpoint accepted the message"
        last_status = None

        for path in self.config.endpoints:
            url = f"{base_url}{path}"
            try:
                response = self.session.post(
                    url, json=payload, headers=headers, timeout=self.config.timeout
                )
            except requests.RequestException as e:
                last_error = f"{path}: {e}"
                logger.warning(f"Delivery to {url} failed: {e}")
                continue

            if 200 <= response.status_code < 300:
                self.circuit.record_success()
                metrics.increment("message_delivery_total", labels={"outcome": "delivered"})
                logger.info(f"Message from {message.from_id} delivered via {path}")
                return DeliveryResult(
                    success=True,
                    endpoint=path,
                    status_code=response.status_code,
                    response=_json_body(response),
                )

            if response.status_code == 404:
                logger.debug(f"Endpoint {path} not found, trying next")
                continue

            last_status = response.status_code
            last_error = f"{path}: HTTP {response.status_code}"
            logger.warning(f"Delivery to {url} rejected with HTTP {response.status_code}")

        self.circuit.record_failure()
        metrics.increment("message_delivery_total", labels={"outcome": "failed"})
        return DeliveryResult(success=False, status_code=last_status, error=last_error)


def _json_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


# ============================================================
# Fallback Queue
# ============================================================

class PendingMessageQueue:
    """Locally stored messages awaiting remote delivery."""

    def __init__(
        self,
        store: PersistedStore,
        client: DeliveryClient,
        max_retries: int | None = None,
    ):
        self.store = store
        self.client = client
        self.max_retries = max_retries if max_retries is not None else client.config.max_retries

    def pending(self) -> list[PendingMessage]:
        return [PendingMessage.from_dict(r) for r in self.store.get(PENDING_KEY, [])]

    def abandoned(self) -> list[PendingMessage]:
        """Messages kept but no longer retried."""
        return [m for m in self.pending() if m.retry_count >= self.max_retries]

    def enqueue(self, message: OutboundMessage, error: str | None) -> PendingMessage:
        pending = PendingMessage.from_outbound(message, error)
        committed, _ = self.store.update(
            PENDING_KEY, lambda records: records + [pending.to_dict()], []
        )
        if not committed:
            logger.error(f"Could not queue message {pending.id}; it will not be retried")
        else:
            logger.info(f"Queued message {pending.id} for later delivery: {error}")
        return pending

    def sweep(self, auth_token: str | None = None) -> SweepReport:
        """
        Retry every pending message below the retry ceiling.

        Stops attempting (without spending retries) once the circuit opens.
        """
        report = SweepReport()
        token = auth_token or self.store.get("authToken")
        outcomes: dict[str, tuple[bool, str | None]] = {}

        with LoggingContext(operation="pending_sweep"):
            for message in self.pending():
                if message.retry_count >= self.max_retries:
                    report.abandoned += 1
                    continue
                if not self.client.available():
                    report.skipped += 1
                    continue

                report.attempted += 1
                try:
                    result = self.client.deliver(message.to_outbound(), auth_token=token)
                    outcomes[message.id] = (result.success, result.error)
                except Exception as e:
                    logger.exception(f"Unexpected error retrying message {message.id}")
                    outcomes[message.id] = (False, str(e))

            now = utc_now_iso()

            def apply(records: list) -> list:
                kept = []
                for record in records:
                    outcome = outcomes.get(record.get("id"))
                    if outcome is None:
                        kept.append(record)
                        continue
                    success, error = outcome
                    if success:
                        report.delivered += 1
                        report.delivered_ids.append(record["id"])
                        continue
                    report.failed += 1
                    record["retryCount"] = int(record.get("retryCount", 0)) + 1
                    record["lastAttempt"] = now
                    record["backendError"] = error
                    kept.append(record)
                report.remaining = len(kept)
                return kept

            committed, _ = self.store.update(PENDING_KEY, apply, [])
            if not committed:
                logger.error("Could not persist pending sweep results")

            if report.delivered_ids:
                self._mark_sent(report.delivered_ids)

        metrics.increment("pending_sweep_total")
        metrics.set_gauge("pending_messages", report.remaining)
        logger.info(
            f"Pending sweep: {report.delivered} delivered, {report.failed} failed, "
            f"{report.abandoned} abandoned, {report.remaining} remaining"
        )
        return report

    def _mark_sent(self, message_ids: list[str]) -> None:
        delivered = set(message_ids)

        def apply(records: list) -> list:
            for record in records:
                if record.get("id") in delivered:
                    record["status"] = "sent"
                    record["localOnly"] = False
                    record.pop("backendError", None)
            return records

        for key in (MESSAGES_KEY, SENT_KEY):
            self.store.update(key, apply, [])


# ============================================================
# Orchestration
# ============================================================

class MessageCenter:
    """Send messages, falling back to the pending queue when delivery fails."""

    def __init__(
        self,
        store: PersistedStore,
        client: DeliveryClient,
        queue: PendingMessageQueue | None = None,
        notifications: NotificationService | None = None,
    ):
        self.store = store
        self.client = client
        self.queue = queue or PendingMessageQueue(store, client)
        self.notifications = notifications or NotificationService(store)

    def _append(self, key: str, record: dict[str, Any]) -> bool:
        committed, _ = self.store.update(key, lambda records: records + [record], [])
        return committed

    def send(self, message: OutboundMessage, auth_token: str | None = None) -> SendOutcome:
        """
        Deliver a message, or store it locally for a later sweep.

        Raises:
            ValueError: If sender, recipient or content is missing
        """
        message.validate()
        result = self.client.deliver(message, auth_token=auth_token)

        if result.success:
            remote_id = result.response.get("id") if isinstance(result.response, dict) else None
            record = {
                "schemaVersion": SCHEMA_VERSION,
                "id": remote_id or generate_id("msg"),
                "fromId": message.from_id,
                "fromName": message.from_name,
                "toId": message.to_id,
                "toName": message.to_name,
                "subject": message.subject,
                "content": message.content,
                "timestamp": utc_now_iso(),
                "status": "sent",
                "localOnly": False,
            }
            self._append(SENT_KEY, record)
            return SendOutcome(delivered=True, message=record, endpoint=result.endpoint)

        pending = self.queue.enqueue(message, result.error)
        local_copy = pending.to_dict()
        for key in (MESSAGES_KEY, SENT_KEY):
            if not self._append(key, local_copy):
                logger.error(f"Could not store local copy of {pending.id} under '{key}'")

        if message.to_type == "talent":
            self.notifications.create(
                talent_id=message.to_id,
                type=NotificationType.MESSAGE,
                client_id=message.from_id,
                client_name=message.from_name,
                message_id=pending.id,
                message_subject=message.subject,
            )

        return SendOutcome(delivered=False, message=local_copy, error=result.error)
