"""
Pytest configuration and shared fixtures for VoiceCast tests.

This module provides shared fixtures and test configuration including:
- In-memory persisted stores
- A payment gateway without simulated latency
- Flask app setup with test configuration
- API authentication headers
- Circuit breaker and metrics reset between tests
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

# Set up test environment before any imports
os.environ["VOICECAST_API_KEY"] = "test-api-key-12345"
os.environ["VOICECAST_REQUIRE_AUTH"] = "false"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["PAYMENT_SIMULATED_LATENCY"] = "0"
os.environ.pop("ADMIN_BOOTSTRAP_PASSWORD", None)

TEST_API_KEY = "test-api-key-12345"


@pytest.fixture(autouse=True)
def reset_global_state():
    """Give every test fresh circuit breakers and metrics."""
    from circuit_breaker import reset_circuit_breakers
    from monitoring import metrics

    reset_circuit_breakers()
    metrics.reset()
    yield
    reset_circuit_breakers()
    metrics.reset()


@pytest.fixture
def memory_backend():
    """Empty in-memory backend with default quotas."""
    from storage import MemoryStore
    return MemoryStore()


@pytest.fixture
def store(memory_backend):
    """PersistedStore over an in-memory backend."""
    from storage import PersistedStore
    return PersistedStore(memory_backend)


@pytest.fixture
def payment_config():
    from config import PaymentConfig
    return PaymentConfig(latency=0)


@pytest.fixture
def gateway(payment_config):
    """Simulated PayPal gateway that never sleeps."""
    from payment_gateway import PaymentGateway
    return PaymentGateway(payment_config, sleep=lambda seconds: None)


@pytest.fixture
def app_config(payment_config):
    """Application config for API tests (auth off, no latency)."""
    from config import AdminConfig, AppConfig, MessagingConfig, StorageConfig
    return AppConfig(
        storage=StorageConfig(backend="memory"),
        messaging=MessagingConfig(base_url="http://messaging.test"),
        payment=payment_config,
        admin=AdminConfig(bootstrap_username="root", bootstrap_password="bootstrap-secret"),
        api_key=TEST_API_KEY,
        require_auth=False,
    )


@pytest.fixture
def services(app_config, store):
    """Service registry sharing the test store."""
    from api.state import ServiceRegistry
    return ServiceRegistry.build(app_config, store=store)


@pytest.fixture
def flask_app(services):
    """Create Flask test app with fresh services for each test."""
    from api import create_app
    app = create_app(services=services)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def flask_client(flask_app):
    """Create Flask test client."""
    return flask_app.test_client()


@pytest.fixture
def test_auth_headers():
    """Provide authentication headers for API tests."""
    return {"X-API-Key": TEST_API_KEY}
