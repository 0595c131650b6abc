"""Payment intent creation, browser confirmation and order payment status."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from libs.common.emails.client import OrderEmailClient, get_email_client
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.ordering_service.models import Order
from services.ordering_service.schemas import (
    ConfirmPaymentRequest,
    CreatePaymentIntentRequest,
    OrderPaymentStatusResponse,
    PaymentIntentResponse,
)
from services.ordering_service.services.payment_state import (
    InvalidPaymentTransition,
    OrderNotFound,
    PaymentNotSucceeded,
    confirm_payment,
    create_payment_intent,
)
from services.ordering_service.stripe_client import (
    StripeClient,
    StripeClientError,
    get_stripe_client,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)


def _provider_unavailable(e: StripeClientError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Payment provider error: {e.message}",
    )


@router.post("/intents", response_model=PaymentIntentResponse)
async def create_intent(
    payload: CreatePaymentIntentRequest,
    db: AsyncSession = Depends(get_async_db),
    stripe: StripeClient = Depends(get_stripe_client),
):
    """
    Start payment for an order.
    The order moves to ``pending`` and keeps the intent id before the client
    secret is returned, so webhooks can always find it.
    """
    order = await db.get(Order, payload.order_id)
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )

    try:
        intent = await create_payment_intent(
            db, order, stripe, payload.payment_method_types
        )
    except InvalidPaymentTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StripeClientError as e:
        raise _provider_unavailable(e)

    return PaymentIntentResponse(
        order_id=order.id,
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        amount=intent.amount,
        currency=intent.currency,
        status=intent.status,
    )


@router.post("/confirm", response_model=OrderPaymentStatusResponse)
async def confirm(
    payload: ConfirmPaymentRequest,
    db: AsyncSession = Depends(get_async_db),
    stripe: StripeClient = Depends(get_stripe_client),
    email_client: OrderEmailClient = Depends(get_email_client),
):
    """
    Called by the browser after Stripe reports success.
    The intent status is re-checked with Stripe before the order is marked paid.
    """
    try:
        return await confirm_payment(
            db, payload.order_id, payload.payment_intent_id, stripe, email_client
        )
    except OrderNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    except PaymentNotSucceeded as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "reason": "PAYMENT_NOT_SUCCEEDED",
                "intent_status": e.intent_status,
                "message": str(e),
            },
        )
    except StripeClientError as e:
        raise _provider_unavailable(e)


@router.get("/orders/{order_id}/status", response_model=OrderPaymentStatusResponse)
async def get_order_payment_status(
    order_id: uuid.UUID, db: AsyncSession = Depends(get_async_db)
):
    # Status transitions are UPDATEs that bypass the identity map
    order = await db.get(Order, order_id, populate_existing=True)
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    return order
