"""Stripe webhook handler."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.emails.client import OrderEmailClient, get_email_client
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.ordering_service.services.payment_state import handle_stripe_event
from services.ordering_service.stripe_client import (
    InvalidWebhookSignature,
    StripeClient,
    StripeClientError,
    get_stripe_client,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    stripe: StripeClient = Depends(get_stripe_client),
    email_client: OrderEmailClient = Depends(get_email_client),
):
    """
    Stripe webhook endpoint (no auth; verified by Stripe-Signature).
    """
    raw = await request.body()
    try:
        event = stripe.construct_event(raw, request.headers.get("stripe-signature"))
    except InvalidWebhookSignature as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except StripeClientError as e:
        logger.error("Cannot verify Stripe webhook: %s", e.message)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message
        )

    logger.info(
        "Stripe webhook %s",
        event.get("type"),
        extra={"extra_fields": {"event_id": event.get("id"), "event": event.get("type")}},
    )
    await handle_stripe_event(db, event, email_client)
    return {"received": True}
