"""
VoiceCast - Simulated PayPal Gateway

Stands in for the PayPal REST API. No money moves: each call waits for the
configured simulated latency and returns identifiers shaped like PayPal's.
The escrow ledger and subscription service depend only on this interface,
so a real client can replace it without touching them.
"""

import logging
import time
from collections.abc import Callable

from config import PaymentConfig
from monitoring import timed
from records import generate_id

logger = logging.getLogger(__name__)

SANDBOX_WEB_URL = "https://www.sandbox.paypal.com"
LIVE_WEB_URL = "https://www.paypal.com"


class PaymentGatewayError(Exception):
    """Raised when the gateway rejects a request."""
    pass


class PaymentGateway:
    """Simulated PayPal client with fixed artificial latency."""

    def __init__(
        self,
        config: PaymentConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or PaymentConfig.from_env()
        self._sleep = sleep

    @property
    def web_url(self) -> str:
        return LIVE_WEB_URL if self.config.environment == "live" else SANDBOX_WEB_URL

    def _simulate_latency(self) -> None:
        if self.config.latency > 0:
            self._sleep(self.config.latency)

    @timed("payment_gateway_call_ms")
    def create_order(self, amount: float, currency: str) -> str:
        """Create an order and return its id."""
        if amount <= 0:
            raise PaymentGatewayError(f"Order amount must be positive, got {amount}")
        self._simulate_latency()
        order_id = generate_id("PAYPAL_ORDER", suffix_length=8, uppercase=True)
        logger.info(f"Created order {order_id} for {amount:.2f} {currency}")
        return order_id

    @timed("payment_gateway_call_ms")
    def capture_order(self, order_id: str) -> str:
        """Capture an approved order, returning the capture id."""
        self._simulate_latency()
        logger.info(f"Captured order {order_id}")
        return generate_id("CAPTURE", suffix_length=8, uppercase=True)

    @timed("payment_gateway_call_ms")
    def create_payout(self, email: str, amount: float, currency: str) -> str:
        """Send a payout to ``email`` and return the payout batch id."""
        if not email:
            raise PaymentGatewayError("Payout requires a receiver email")
        self._simulate_latency()
        payout_id = generate_id("PAYOUT", suffix_length=8, uppercase=True)
        logger.info(f"Created payout {payout_id}: {amount:.2f} {currency} to {email}")
        return payout_id

    @timed("payment_gateway_call_ms")
    def create_subscription(self, plan_id: str) -> tuple[str, str]:
        """
        Create a subscription awaiting buyer approval.

        Returns:
            Tuple of (subscription_id, approval_url)
        """
        self._simulate_latency()
        subscription_id = generate_id("PAYPAL_SUB", suffix_length=8, uppercase=True)
        approval_url = f"{self.web_url}/webapps/billing/subscriptions?ba_token={subscription_id}"
        logger.info(f"Created subscription {subscription_id} for plan {plan_id}")
        return subscription_id, approval_url
