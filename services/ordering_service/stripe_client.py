"""
Stripe API client for payment intents and webhook verification.

Provides async methods for:
- Creating payment intents
- Retrieving a payment intent's current status
- Verifying and decoding webhook events

The Stripe SDK is synchronous; every call runs in a worker thread so the
event loop is never blocked on the network.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Optional

import stripe
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PaymentIntentInfo:
    """The parts of a Stripe PaymentIntent the ordering flow needs."""

    id: str
    status: str  # requires_payment_method, processing, succeeded, canceled, ...
    amount: int  # in cents
    currency: str
    client_secret: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class StripeClientError(Exception):
    """Base exception for Stripe API errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidWebhookSignature(StripeClientError):
    """Webhook payload did not carry a valid Stripe signature."""


def _to_info(intent) -> PaymentIntentInfo:
    last_error = getattr(intent, "last_payment_error", None)
    return PaymentIntentInfo(
        id=intent.id,
        status=intent.status,
        amount=intent.amount,
        currency=intent.currency,
        client_secret=getattr(intent, "client_secret", None),
        last_error=getattr(last_error, "message", None) if last_error else None,
    )


class StripeClient:
    """Async wrapper over the Stripe PaymentIntent and Webhook APIs."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.api_version = settings.STRIPE_API_VERSION
        if not self.secret_key:
            logger.warning("STRIPE_SECRET_KEY is not set; Stripe calls will fail")

    async def _call(self, fn, **params):
        try:
            return await asyncio.to_thread(
                fn,
                api_key=self.secret_key,
                stripe_version=self.api_version,
                **params,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe API error: {e.user_message or e}")
            raise StripeClientError(
                message=e.user_message or str(e), code=getattr(e, "code", None)
            ) from e

    # =========================================================================
    # Payment Intents
    # =========================================================================

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        payment_method_types: list[str],
        metadata: dict[str, str],
    ) -> PaymentIntentInfo:
        """
        Create a payment intent.

        Args:
            amount: Amount in cents
            currency: ISO currency code, lower-case (eur)
            payment_method_types: Allowed method types (card, mobilepay, ...)
            metadata: Echoed back on the intent and its webhook events

        Returns:
            PaymentIntentInfo including the client secret for the browser
        """
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            payment_method_types=payment_method_types,
            metadata=metadata,
        )
        logger.info(f"Created payment intent {intent.id} for {amount} {currency}")
        return _to_info(intent)

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentInfo:
        """Fetch the current state of a payment intent from Stripe."""
        intent = await self._call(stripe.PaymentIntent.retrieve, id=intent_id)
        return _to_info(intent)

    # =========================================================================
    # Webhooks
    # =========================================================================

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify a webhook delivery and decode its event.

        Raises:
            InvalidWebhookSignature: missing/invalid signature or malformed body
        """
        if not signature:
            raise InvalidWebhookSignature("Missing Stripe-Signature header")
        if not self.webhook_secret:
            raise StripeClientError("STRIPE_WEBHOOK_SECRET is required")

        body = payload.decode("utf-8")
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, tolerance=300
            )
            return json.loads(body)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Rejected webhook with bad signature: {e}")
            raise InvalidWebhookSignature("Invalid signature") from e
        except ValueError as e:
            raise InvalidWebhookSignature("Invalid payload") from e


_stripe_client: Optional[StripeClient] = None


def get_stripe_client() -> StripeClient:
    """Get or create the singleton StripeClient instance."""
    global _stripe_client
    if _stripe_client is None:
        _stripe_client = StripeClient()
    return _stripe_client
