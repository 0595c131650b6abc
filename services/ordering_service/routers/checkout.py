"""Checkout: eligibility gate, price quote and order placement."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from libs.common.currency import ZERO, round_cents, to_decimal
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.ordering_service.models import Branch, Order
from services.ordering_service.schemas import (
    BlacklistCheckRequest,
    BlacklistCheckResponse,
    OrderCreateRequest,
    OrderResponse,
    QuoteRequest,
    QuoteResponse,
)
from services.ordering_service.services.blacklist import check_blacklist
from services.ordering_service.services.business_hours import is_ordering_available
from services.ordering_service.services.coupons import (
    CouponRejection,
    CouponUsageExceeded,
    CouponValidation,
    consume_coupon,
    validate_coupon,
)
from services.ordering_service.services.loyalty_ops import calculate_loyalty_points
from services.ordering_service.services.pricing import OrderQuote
from services.ordering_service.services.promotions import (
    best_promotion_discount,
    list_active_promotions,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/checkout", tags=["checkout"])
logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 3


async def _build_quote(
    db: AsyncSession, payload: QuoteRequest
) -> tuple[OrderQuote, Optional[CouponValidation], Optional[bool]]:
    """Price the cart: best promotion per line, then the coupon on the subtotal."""
    available = None
    if payload.branch_id:
        branch = await db.get(Branch, payload.branch_id)
        if not branch:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Branch not found"
            )
        available = is_ordering_available(branch)

    subtotal = sum(
        (round_cents(to_decimal(item.price) * item.quantity) for item in payload.items),
        ZERO,
    )

    promotions = await list_active_promotions(
        db, branch_id=payload.branch_id, order_type=payload.order_type
    )
    promotions = [
        p for p in promotions if p.branch_id is None or p.branch_id == payload.branch_id
    ]
    promotion_discount = ZERO
    for item in payload.items:
        applicable = [
            p
            for p in promotions
            if p.category_id is None or p.category_id == item.category_id
        ]
        unit_discount, _ = best_promotion_discount(item.price, applicable, subtotal)
        promotion_discount += round_cents(unit_discount * item.quantity)

    quote = OrderQuote(
        subtotal=subtotal,
        delivery_fee=to_decimal(payload.delivery_fee),
        promotion_discount=promotion_discount,
    )

    validation = None
    if payload.coupon_code:
        validation = await validate_coupon(
            db,
            code=payload.coupon_code,
            order_type=payload.order_type,
            branch_id=payload.branch_id,
            order_amount=subtotal,
        )
        quote.apply_coupon(validation)

    return quote, validation, available


def _quote_response(quote: OrderQuote, order_type, available) -> QuoteResponse:
    return QuoteResponse(
        subtotal=quote.subtotal,
        delivery_fee=quote.delivery_fee,
        promotion_discount=quote.promotion_discount,
        coupon_code=quote.coupon_code,
        coupon_discount=quote.coupon_discount,
        coupon_error=quote.coupon_error,
        total=quote.total,
        loyalty_points=calculate_loyalty_points(quote.total, order_type),
        ordering_available=available,
    )


@router.post("/blacklist-check", response_model=BlacklistCheckResponse)
async def blacklist_check(
    payload: BlacklistCheckRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Check whether a customer may place an order.
    Lookup failures answer "not blocked" so checkout is never stuck on this check.
    """
    result = await check_blacklist(db, email=payload.email, phone=payload.phone)
    return BlacklistCheckResponse(
        blocked=result.blocked, reason=result.reason, blocked_at=result.blocked_at
    )


@router.post("/quote", response_model=QuoteResponse)
async def quote_order(
    payload: QuoteRequest,
    db: AsyncSession = Depends(get_async_db),
):
    quote, _, available = await _build_quote(db, payload)
    return _quote_response(quote, payload.order_type, available)


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: OrderCreateRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Create an order awaiting payment.

    1. Blacklisted customers are refused
    2. The branch must be open for orders
    3. A coupon, if given, must validate and is counted against its limit
    """
    check = await check_blacklist(
        db, email=payload.customer_email, phone=payload.customer_phone
    )
    if check.blocked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "reason": "BLACKLISTED",
                "message": "We are unable to accept orders from this customer",
            },
        )

    quote, validation, available = await _build_quote(db, payload)
    if available is False:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "reason": "BRANCH_CLOSED",
                "message": "This branch is not taking orders right now",
            },
        )
    if validation is not None and not validation.valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": validation.reason.value, "message": validation.message},
        )

    order_fields = dict(
        customer_id=payload.customer_id,
        customer_name=payload.customer_name,
        customer_email=payload.customer_email,
        customer_phone=payload.customer_phone,
        branch_id=payload.branch_id,
        order_type=payload.order_type,
        delivery_address=payload.delivery_address,
        special_instructions=payload.special_instructions,
        line_items=[item.model_dump(mode="json") for item in payload.items],
        subtotal=quote.subtotal,
        delivery_fee=quote.delivery_fee,
        discount_amount=quote.discount_total,
        coupon_code=quote.coupon_code,
        total_amount=quote.total,
        payment_method=payload.payment_method,
    )

    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        order_number = Order.generate_order_number()
        order = Order(order_number=order_number, **order_fields)
        db.add(order)
        try:
            if quote.coupon_id:
                await consume_coupon(db, quote.coupon_id)
            await db.commit()
            break
        except CouponUsageExceeded:
            await db.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "reason": CouponRejection.USAGE_LIMIT_EXCEEDED.value,
                    "message": "Coupon usage limit exceeded",
                },
            )
        except IntegrityError:
            # uq on order_number; the coupon use rolls back with it
            await db.rollback()
            logger.warning(
                "Order number %s already taken, retrying (%d/%d)",
                order_number,
                attempt,
                ORDER_NUMBER_ATTEMPTS,
            )
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Failed to place order: %s", e)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Could not place order, please try again",
            )
    else:
        logger.error("No free order number after %d attempts", ORDER_NUMBER_ATTEMPTS)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not place order, please try again",
        )

    await db.refresh(order)
    logger.info(
        "Order %s placed for %.2f",
        order.order_number,
        order.total_amount,
        extra={"extra_fields": {"order_id": str(order.id)}},
    )
    return order
