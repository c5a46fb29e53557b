"""
Shared state for the VoiceCast API.

The service objects are built once per application by ``create_app`` and
stored on the app, so blueprints reach them through ``get_services()``
rather than module globals.
"""

from dataclasses import dataclass

from flask import current_app

from accounts import UserDirectory
from admin import AdminDirectory, UserAdministration
from config import AppConfig
from escrow import EscrowLedger
from messaging import DeliveryClient, MessageCenter, PendingMessageQueue
from moderation import AdminActionLog, ContentFilter, ModerationService
from notifications import NotificationService
from payment_gateway import PaymentGateway
from storage import PersistedStore, get_storage_backend

EXTENSION_KEY = "voicecast"


@dataclass
class ServiceRegistry:
    """Every service the HTTP layer and CLI work with."""
    config: AppConfig
    store: PersistedStore
    gateway: PaymentGateway
    escrow: EscrowLedger
    notifications: NotificationService
    delivery: DeliveryClient
    pending: PendingMessageQueue
    messages: MessageCenter
    action_log: AdminActionLog
    content_filter: ContentFilter
    moderation: ModerationService
    users: UserDirectory
    admins: AdminDirectory
    user_admin: UserAdministration

    @classmethod
    def build(cls, config: AppConfig | None = None, store: PersistedStore | None = None) -> "ServiceRegistry":
        """Wire the services from configuration."""
        config = config or AppConfig.from_env()
        store = store or PersistedStore(get_storage_backend(config.storage))

        gateway = PaymentGateway(config.payment)
        notifications = NotificationService(store)
        delivery = DeliveryClient(config.messaging)
        pending = PendingMessageQueue(store, delivery, config.messaging.max_retries)
        action_log = AdminActionLog(store)
        content_filter = ContentFilter(store)
        users = UserDirectory(store)

        return cls(
            config=config,
            store=store,
            gateway=gateway,
            escrow=EscrowLedger(store, gateway, config.payment.platform_fee_rate),
            notifications=notifications,
            delivery=delivery,
            pending=pending,
            messages=MessageCenter(store, delivery, pending, notifications),
            action_log=action_log,
            content_filter=content_filter,
            moderation=ModerationService(store, action_log, content_filter),
            users=users,
            admins=AdminDirectory(store, action_log, config.admin),
            user_admin=UserAdministration(store, users, action_log),
        )


def get_services() -> ServiceRegistry:
    """Services of the current Flask application."""
    return current_app.extensions[EXTENSION_KEY]
