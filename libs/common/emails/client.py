"""
Order confirmation email client.

Sends the confirmation for a paid order through the restaurant's email API
(``POST {EMAIL_API_URL}/api/send-order-confirmation``). The API owns the
templates; this client only builds the payload.

Sending is best-effort: every failure is logged and reported as ``False``,
never raised, so a mail outage cannot undo a payment.

Usage:
    from libs.common.emails.client import get_email_client

    email_client = get_email_client()
    sent = await email_client.send_order_confirmation(order, branch)
"""

from decimal import Decimal
from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


def _money(value: Optional[Decimal]) -> float:
    return float(value or 0)


class OrderEmailClient:
    """HTTP client for the order confirmation email API."""

    def __init__(self, base_url: Optional[str] = None, language: Optional[str] = None):
        settings = get_settings()
        self.base_url = (base_url or settings.EMAIL_API_URL).rstrip("/")
        self.language = language or settings.EMAIL_LANGUAGE
        self.timeout = 10.0

    def build_payload(self, order, branch=None) -> dict[str, Any]:
        """Confirmation payload for ``order`` as the email API expects it."""
        items = [
            {
                "name": item.get("name") or "Item",
                "quantity": item.get("quantity", 1),
                "price": float(item.get("price") or 0),
                "toppings": item.get("toppings") or [],
            }
            for item in (order.line_items or [])
        ]
        return {
            "customerName": order.customer_name,
            "customerEmail": order.customer_email,
            "orderNumber": order.order_number,
            "orderItems": items,
            "subtotal": _money(order.subtotal),
            "deliveryFee": _money(order.delivery_fee),
            "discountAmount": _money(order.discount_amount),
            "totalAmount": _money(order.total_amount),
            "orderType": order.order_type.value,
            "deliveryAddress": order.delivery_address,
            "specialInstructions": order.special_instructions,
            "branchName": branch.name if branch else None,
            "branchPhone": branch.phone if branch else None,
            "branchAddress": branch.address if branch else None,
            "paymentMethod": order.payment_method or "online",
            "language": self.language,
        }

    async def send_order_confirmation(self, order, branch=None) -> bool:
        """
        Send the confirmation email for a paid order.

        Args:
            order: The paid Order
            branch: Branch the order was placed with, for contact details

        Returns:
            True if the email API accepted the message, False otherwise
        """
        if not order.customer_email:
            logger.info(
                "Order %s has no customer email, skipping confirmation",
                order.order_number,
            )
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/api/send-order-confirmation",
                    json=self.build_payload(order, branch),
                )
        except httpx.HTTPError as e:
            logger.error(
                "Failed to reach email API for order %s: %s", order.order_number, e
            )
            return False

        if response.is_success:
            logger.info("Confirmation email sent for order %s", order.order_number)
            return True

        logger.error(
            "Email API returned %d for order %s: %s",
            response.status_code,
            order.order_number,
            response.text,
        )
        return False


# Singleton instance for convenience
_email_client: Optional[OrderEmailClient] = None


def get_email_client() -> OrderEmailClient:
    """Get or create the singleton OrderEmailClient instance."""
    global _email_client
    if _email_client is None:
        _email_client = OrderEmailClient()
    return _email_client
