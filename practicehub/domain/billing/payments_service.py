"""Payments processor service - Integration with the Dodo Payments API"""

import logging
from typing import Any, Optional

from dodopayments import AsyncDodoPayments  # type: ignore

from ...config import DODO_PAYMENTS_API_KEY, DODO_PAYMENTS_ENVIRONMENT
from ...exceptions import ProcessorError

logger = logging.getLogger(__name__)


def normalize_dodo_environment(env: Optional[str]) -> str:
    """Normalize Dodo environment value to expected format"""
    value = (env or "test_mode").strip().lower()
    if value in {"live", "production", "prod", "live_mode"}:
        return "live_mode"
    if value not in {"test", "sandbox", "staging", "dev", "development", "test_mode"}:
        logger.warning(f"Unknown DODO environment '{env}', defaulting to test_mode")
    return "test_mode"


def _field(response: Any, name: str) -> Any:
    """SDK responses are models; tests and older SDKs hand back dicts"""
    if isinstance(response, dict):
        return response.get(name)
    return getattr(response, name, None)


class PaymentsProcessorService:
    """Service for subscription operations on the payment processor"""

    def __init__(self, api_key: Optional[str] = None, environment: Optional[str] = None):
        self.api_key = api_key if api_key is not None else DODO_PAYMENTS_API_KEY
        self.environment = normalize_dodo_environment(environment or DODO_PAYMENTS_ENVIRONMENT)
        self.client = None

        if not self.api_key:
            logger.warning("DODO_PAYMENTS_API_KEY not set; membership checkout will fail until configured")
        else:
            self.client = AsyncDodoPayments(bearer_token=self.api_key, environment=self.environment)
            logger.info(f"Dodo Payments client initialized (env={self.environment})")

    def is_available(self) -> bool:
        return self.client is not None

    def _require_client(self):
        if not self.client:
            raise ProcessorError("Payment processor is not configured", code="ProcessorUnavailable")
        return self.client

    async def create_checkout_session(
        self,
        product_id: str,
        customer_email: str,
        customer_name: Optional[str],
        return_url: str,
        metadata: Optional[dict] = None,
    ) -> dict:
        """Start a subscription checkout; returns {'session_id', 'checkout_url'}"""
        client = self._require_client()
        try:
            response = await client.checkout_sessions.create(
                product_cart=[{"product_id": product_id, "quantity": 1}],
                customer={"email": customer_email, "name": customer_name or customer_email},
                return_url=return_url,
                metadata={k: str(v) for k, v in (metadata or {}).items()},
            )
        except Exception as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise ProcessorError("Could not start checkout with the payment processor") from e
        return {
            "session_id": _field(response, "session_id"),
            "checkout_url": _field(response, "checkout_url"),
        }

    async def cancel_at_period_end(self, subscription_id: str) -> None:
        """Stop renewal; the processor sends subscription.cancelled when the period ends"""
        client = self._require_client()
        try:
            await client.subscriptions.update(
                subscription_id=subscription_id, cancel_at_next_billing_date=True
            )
        except Exception as e:
            logger.error(f"Failed to cancel subscription {subscription_id}: {e}")
            raise ProcessorError("Could not cancel the subscription with the payment processor") from e

    async def change_plan(
        self,
        subscription_id: str,
        product_id: str,
        proration_billing_mode: str = "prorated_immediately",
    ) -> None:
        client = self._require_client()
        try:
            await client.subscriptions.change_plan(
                subscription_id=subscription_id,
                product_id=product_id,
                quantity=1,
                proration_billing_mode=proration_billing_mode,
            )
        except Exception as e:
            logger.error(f"Failed to change plan for subscription {subscription_id}: {e}")
            raise ProcessorError("Could not change the subscription plan") from e


# Singleton instance
payments_service = PaymentsProcessorService()


def get_payments_service() -> PaymentsProcessorService:
    """Dependency injection for the processor client"""
    return payments_service
