"""
VoiceCast API Package.

This package contains the Flask application factory and the blueprints of
the VoiceCast service API.

Blueprints:
- monitoring: Metrics and health probes
- escrow: Escrow payment lifecycle
- messages: Message delivery and the pending retry queue
- moderation: Content checks, flagging and the admin action log
"""

import logging

from flask import Flask, jsonify

from accounts import AccountValidationError
from admin import AdminAuthError, AdminPermissionError, AdminValidationError
from api.escrow import escrow_bp
from api.messages import messages_bp
from api.moderation import moderation_bp
from api.monitoring import monitoring_bp
from api.state import EXTENSION_KEY, ServiceRegistry
from audio_library import AudioStorageError, AudioValidationError
from config import AppConfig
from escrow import EscrowValidationError, InvalidEscrowTransition
from moderation import MessageNotFoundError
from monitoring import setup_request_logging
from records import RecordValidationError
from storage import StorageError, StorageQuotaError
from subscriptions import InvalidSubscriptionTransition

logger = logging.getLogger(__name__)

# List of all blueprints for registration
# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (monitoring_bp, ''),
    (escrow_bp, ''),
    (messages_bp, ''),
    (moderation_bp, ''),
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def register_error_handlers(app: Flask) -> None:
    """Map service exceptions to JSON error responses."""

    def handler(status: int):
        def handle(error):
            if status >= 500:
                logger.error(f"{error.__class__.__name__}: {error}")
            return jsonify({"error": str(error), "type": error.__class__.__name__}), status
        return handle

    for exc in (
        AccountValidationError,
        AdminValidationError,
        AudioValidationError,
        EscrowValidationError,
        RecordValidationError,
    ):
        app.register_error_handler(exc, handler(400))

    app.register_error_handler(AdminAuthError, handler(401))
    app.register_error_handler(AdminPermissionError, handler(403))
    app.register_error_handler(MessageNotFoundError, handler(404))
    app.register_error_handler(InvalidEscrowTransition, handler(409))
    app.register_error_handler(InvalidSubscriptionTransition, handler(409))
    app.register_error_handler(StorageQuotaError, handler(507))
    app.register_error_handler(AudioStorageError, handler(507))
    app.register_error_handler(StorageError, handler(500))

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Endpoint not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 errors."""
        return jsonify({"error": "Internal server error"}), 500


def create_app(
    config: AppConfig | None = None,
    services: ServiceRegistry | None = None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        config: Application configuration (read from the environment if omitted)
        services: Pre-built services, mainly for tests
    """
    config = config or (services.config if services else AppConfig.from_env())
    services = services or ServiceRegistry.build(config)

    app = Flask(__name__)
    app.config['JSON_SORT_KEYS'] = False
    app.config['VOICECAST_API_KEY'] = config.api_key
    app.config['VOICECAST_REQUIRE_AUTH'] = config.require_auth
    app.extensions[EXTENSION_KEY] = services

    setup_request_logging(app)
    register_blueprints(app)
    register_error_handlers(app)

    if config.messaging.sweep_on_start:
        report = services.pending.sweep()
        logger.info("Startup sweep finished", extra={"report": report.to_dict()})

    return app

