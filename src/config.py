"""
VoiceCast - Service Configuration

Environment-driven configuration for every service. A ``.env`` file in the
working directory is loaded once when this module is imported.

Environment Variables:
    STORAGE_BACKEND=memory|json|redis
    STORAGE_FILE=voicecast_data.json
    STORAGE_REDIS_URL=redis://localhost:6379/0
    STORAGE_ITEM_LIMIT_BYTES=1572864
    STORAGE_TOTAL_LIMIT_BYTES=4194304
    MESSAGE_API_BASE_URL=http://localhost:3001
    MESSAGE_ENDPOINTS=/api/contact/talent,/api/messages/send,/api/contact
    MESSAGE_MAX_RETRIES=3
    PAYPAL_CLIENT_ID=...
    PAYMENT_SIMULATED_LATENCY=1.5
    ADMIN_BOOTSTRAP_PASSWORD=...
    VOICECAST_API_KEY=...
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from storage.base import DEFAULT_ITEM_LIMIT_BYTES, DEFAULT_TOTAL_LIMIT_BYTES

load_dotenv()

DEFAULT_MESSAGE_ENDPOINTS = (
    "/api/contact/talent",
    "/api/messages/send",
    "/api/contact",
)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class StorageConfig:
    """Configuration for the persisted store."""

    backend: str = "memory"
    file_path: str = "voicecast_data.json"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "voicecast:"
    redis_timeout: float = 1.0
    item_limit_bytes: int = DEFAULT_ITEM_LIMIT_BYTES
    total_limit_bytes: int = DEFAULT_TOTAL_LIMIT_BYTES

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """Create configuration from environment variables."""
        return cls(
            backend=os.getenv("STORAGE_BACKEND", "memory"),
            file_path=os.getenv("STORAGE_FILE", "voicecast_data.json"),
            redis_url=os.getenv("STORAGE_REDIS_URL", "redis://localhost:6379/0"),
            redis_prefix=os.getenv("STORAGE_REDIS_PREFIX", "voicecast:"),
            redis_timeout=float(os.getenv("STORAGE_REDIS_TIMEOUT", "1.0")),
            item_limit_bytes=int(
                os.getenv("STORAGE_ITEM_LIMIT_BYTES", str(DEFAULT_ITEM_LIMIT_BYTES))
            ),
            total_limit_bytes=int(
                os.getenv("STORAGE_TOTAL_LIMIT_BYTES", str(DEFAULT_TOTAL_LIMIT_BYTES))
            ),
        )


@dataclass
class MessagingConfig:
    """Configuration for remote message delivery and the pending queue."""

    base_url: str = "http://localhost:3001"
    endpoints: tuple[str, ...] = DEFAULT_MESSAGE_ENDPOINTS
    timeout: float = 10.0
    max_retries: int = 3  # Pending messages at or past this are never retried
    circuit_threshold: int = 5
    circuit_timeout: float = 30.0
    sweep_on_start: bool = False
    platform: str = "VoiceCast"

    @classmethod
    def from_env(cls) -> "MessagingConfig":
        """Create configuration from environment variables."""
        endpoints = os.getenv("MESSAGE_ENDPOINTS")
        return cls(
            base_url=os.getenv("MESSAGE_API_BASE_URL", "http://localhost:3001"),
            endpoints=(
                tuple(e.strip() for e in endpoints.split(",") if e.strip())
                if endpoints
                else DEFAULT_MESSAGE_ENDPOINTS
            ),
            timeout=float(os.getenv("MESSAGE_TIMEOUT", "10.0")),
            max_retries=int(os.getenv("MESSAGE_MAX_RETRIES", "3")),
            circuit_threshold=int(os.getenv("MESSAGE_CIRCUIT_THRESHOLD", "5")),
            circuit_timeout=float(os.getenv("MESSAGE_CIRCUIT_TIMEOUT", "30.0")),
            sweep_on_start=_env_bool("PENDING_SWEEP_ON_START"),
        )


@dataclass
class PaymentConfig:
    """Configuration for the simulated PayPal gateway and escrow fees."""

    client_id: str = ""
    environment: str = "sandbox"
    latency: float = 1.5  # Simulated network delay in seconds
    platform_fee_rate: float = 0.05

    @classmethod
    def from_env(cls) -> "PaymentConfig":
        """Create configuration from environment variables."""
        return cls(
            client_id=os.getenv("PAYPAL_CLIENT_ID", ""),
            environment=os.getenv("PAYPAL_ENVIRONMENT", "sandbox"),
            latency=float(os.getenv("PAYMENT_SIMULATED_LATENCY", "1.5")),
            platform_fee_rate=float(os.getenv("ESCROW_PLATFORM_FEE_RATE", "0.05")),
        )


@dataclass
class AdminConfig:
    """Bootstrap credentials for the first super admin."""

    bootstrap_username: str = "admin"
    bootstrap_password: str | None = None

    @classmethod
    def from_env(cls) -> "AdminConfig":
        """Create configuration from environment variables."""
        return cls(
            bootstrap_username=os.getenv("ADMIN_BOOTSTRAP_USERNAME", "admin"),
            bootstrap_password=os.getenv("ADMIN_BOOTSTRAP_PASSWORD") or None,
        )


@dataclass
class AppConfig:
    """Top-level application configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    api_key: str | None = None
    require_auth: bool = True
    host: str = "0.0.0.0"
    port: int = 5000
    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls(
            storage=StorageConfig.from_env(),
            messaging=MessagingConfig.from_env(),
            payment=PaymentConfig.from_env(),
            admin=AdminConfig.from_env(),
            api_key=os.getenv("VOICECAST_API_KEY") or None,
            require_auth=_env_bool("VOICECAST_REQUIRE_AUTH", "true"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "5000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "console"),
        )
