"""Order payment lifecycle.

    unset ──► pending ──► paid ──► refunded
                 │  ▲       ▲
                 ▼  │       │
                failed ─────┘

Every transition is a compare-and-set: ``UPDATE orders SET payment_status=<to>
WHERE id=? AND payment_status IN (<states allowed to move to 'to'>)``. The
browser confirmation and the Stripe webhook race to mark an order paid; only
the caller whose update hit a row runs the side effects (points and
confirmation email).
"""

import asyncio
import uuid
from typing import Optional, Protocol

from libs.common.config import get_settings
from libs.common.currency import euros_to_cents
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.ordering_service.models import Branch, Order, PaymentStatus
from services.ordering_service.services.loyalty_ops import award_order_points
from services.ordering_service.stripe_client import PaymentIntentInfo, StripeClient
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.UNSET: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    # A failed attempt can be retried with a new intent, or the same intent
    # can still succeed after a declined first card.
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# Stripe intent statuses that end a polling loop
TERMINAL_INTENT_STATUSES = {
    "succeeded": PaymentStatus.PAID,
    "canceled": PaymentStatus.FAILED,
    "requires_payment_method": PaymentStatus.FAILED,
}


class OrderNotifier(Protocol):
    async def send_order_confirmation(self, order: Order, branch: Optional[Branch]) -> bool:
        ...


class OrderNotFound(LookupError):
    pass


class InvalidPaymentTransition(Exception):
    def __init__(self, order_number: str, current: PaymentStatus, target: PaymentStatus):
        self.current = current
        self.target = target
        super().__init__(
            f"Order {order_number} cannot move from {current.value} to {target.value}"
        )


class PaymentNotSucceeded(Exception):
    """Stripe does not report the intent as succeeded; the order is not paid."""

    def __init__(self, intent_status: str, message: Optional[str] = None):
        self.intent_status = intent_status
        super().__init__(message or f"Payment not completed (status: {intent_status})")


class PaymentPollingTimeout(Exception):
    def __init__(self, intent_id: str, attempts: int):
        self.intent_id = intent_id
        self.attempts = attempts
        super().__init__(
            f"Payment {intent_id} still not final after {attempts} status checks"
        )


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in TRANSITIONS[current]


def sources_of(target: PaymentStatus) -> list[PaymentStatus]:
    """States from which ``target`` may be entered."""
    return [state for state, targets in TRANSITIONS.items() if target in targets]


async def _compare_and_set(
    db: AsyncSession, order_id: uuid.UUID, target: PaymentStatus, **values
) -> bool:
    """Move the order to ``target`` if its current state allows it. Commits."""
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.payment_status.in_(sources_of(target)))
        .values(payment_status=target, updated_at=utc_now(), **values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def _reload(db: AsyncSession, order_id: uuid.UUID) -> Order:
    return await db.get(Order, order_id, populate_existing=True)


async def get_order_by_intent(db: AsyncSession, intent_id: str) -> Optional[Order]:
    result = await db.execute(
        select(Order).where(Order.stripe_payment_intent_id == intent_id)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Intent creation (-> pending)
# ---------------------------------------------------------------------------


async def create_payment_intent(
    db: AsyncSession,
    order: Order,
    stripe: StripeClient,
    payment_method_types: Optional[list[str]] = None,
) -> PaymentIntentInfo:
    """Create a Stripe intent for ``order`` and record it as pending.

    The intent id is stored before the browser ever sees the client secret,
    so a webhook can find the order even if confirmation never runs. A pending
    order that already has an intent gets that intent back.
    """
    settings = get_settings()

    if order.payment_status == PaymentStatus.PENDING and order.stripe_payment_intent_id:
        return await stripe.retrieve_payment_intent(order.stripe_payment_intent_id)

    if not can_transition(order.payment_status, PaymentStatus.PENDING):
        raise InvalidPaymentTransition(
            order.order_number, order.payment_status, PaymentStatus.PENDING
        )

    amount = euros_to_cents(order.total_amount)
    if amount <= 0:
        raise ValueError(f"Order {order.order_number} has nothing to pay")

    intent = await stripe.create_payment_intent(
        amount=amount,
        currency=settings.CURRENCY,
        payment_method_types=payment_method_types or settings.PAYMENT_METHOD_TYPES,
        metadata={"order_id": str(order.id), "order_number": order.order_number},
    )

    moved = await _compare_and_set(
        db,
        order.id,
        PaymentStatus.PENDING,
        stripe_payment_intent_id=intent.id,
        last_payment_error=None,
    )
    order = await _reload(db, order.id)
    if not moved:
        raise InvalidPaymentTransition(
            order.order_number, order.payment_status, PaymentStatus.PENDING
        )

    logger.info(
        "Order %s pending on intent %s (%d cents)",
        order.order_number,
        intent.id,
        amount,
        extra={"extra_fields": {"order_id": str(order.id), "intent_id": intent.id}},
    )
    return intent


# ---------------------------------------------------------------------------
# Paid transition
# ---------------------------------------------------------------------------


async def _send_confirmation(
    db: AsyncSession, order: Order, notifier: OrderNotifier
) -> None:
    order_number = order.order_number
    try:
        branch = await db.get(Branch, order.branch_id) if order.branch_id else None
        sent = await notifier.send_order_confirmation(order, branch)
    except Exception as e:
        logger.error("Confirmation email for order %s failed: %s", order_number, e)
        return
    if sent:
        order.confirmation_sent_at = utc_now()
        await db.commit()


async def mark_order_paid(
    db: AsyncSession, order_id: uuid.UUID, notifier: OrderNotifier
) -> bool:
    """Transition an order to paid. Returns False if it already was.

    Only the winning caller awards loyalty points and sends the confirmation.
    Neither side effect can undo the transition.
    """
    if not await _compare_and_set(db, order_id, PaymentStatus.PAID, paid_at=utc_now()):
        logger.info("Order %s already paid or not payable, skipping", order_id)
        return False

    order = await _reload(db, order_id)
    logger.info(
        "Order %s marked paid",
        order.order_number,
        extra={"extra_fields": {"order_id": str(order.id)}},
    )

    order_number = order.order_number
    try:
        await award_order_points(db, order)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to award points for order %s: %s", order_number, e)

    order = await _reload(db, order_id)
    await _send_confirmation(db, order, notifier)
    return True


async def confirm_payment(
    db: AsyncSession,
    order_id: uuid.UUID,
    payment_intent_id: str,
    stripe: StripeClient,
    notifier: OrderNotifier,
) -> Order:
    """Browser-side confirmation, re-verified against Stripe.

    The client only tells us which intent to check; the intent status comes
    from Stripe itself.
    """
    order = await db.get(Order, order_id)
    if order is None:
        raise OrderNotFound(str(order_id))
    if order.stripe_payment_intent_id != payment_intent_id:
        raise PaymentNotSucceeded(
            "unknown_intent", "Payment intent does not belong to this order"
        )
    if order.payment_status == PaymentStatus.PAID:
        return order

    intent = await stripe.retrieve_payment_intent(payment_intent_id)
    if not intent.succeeded:
        logger.warning(
            "Confirmation for order %s rejected, intent %s is %s",
            order.order_number,
            intent.id,
            intent.status,
        )
        raise PaymentNotSucceeded(intent.status)

    await mark_order_paid(db, order.id, notifier)
    return await _reload(db, order.id)


# ---------------------------------------------------------------------------
# Webhook events
# ---------------------------------------------------------------------------


async def handle_stripe_event(
    db: AsyncSession, event: dict, notifier: OrderNotifier
) -> None:
    """Apply a verified Stripe event. Unknown events and intents are ignored."""
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "charge.refunded":
        intent_id = obj.get("payment_intent")
    elif event_type in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        intent_id = obj.get("id")
    else:
        logger.debug("Ignoring Stripe event %s", event_type)
        return

    order = await get_order_by_intent(db, intent_id) if intent_id else None
    if order is None:
        logger.warning(
            "Stripe event %s for unknown intent %s",
            event_type,
            intent_id,
            extra={"extra_fields": {"event": event_type, "intent_id": intent_id}},
        )
        return

    if event_type == "payment_intent.succeeded":
        await mark_order_paid(db, order.id, notifier)

    elif event_type == "payment_intent.payment_failed":
        error = (obj.get("last_payment_error") or {}).get("message")
        if await _compare_and_set(
            db, order.id, PaymentStatus.FAILED, last_payment_error=error
        ):
            logger.info("Order %s payment failed: %s", order.order_number, error)
        else:
            logger.info(
                "Ignoring payment failure for order %s in state %s",
                order.order_number,
                order.payment_status.value,
            )

    elif event_type == "charge.refunded":
        if await _compare_and_set(
            db, order.id, PaymentStatus.REFUNDED, refunded_at=utc_now()
        ):
            logger.info("Order %s refunded", order.order_number)
        else:
            logger.warning(
                "Refund for order %s ignored, order is %s",
                order.order_number,
                order.payment_status.value,
            )


# ---------------------------------------------------------------------------
# Status polling
# ---------------------------------------------------------------------------


async def poll_payment_status(
    stripe: StripeClient,
    intent_id: str,
    max_attempts: Optional[int] = None,
    interval: Optional[float] = None,
) -> PaymentStatus:
    """Check an intent until it reaches a final status.

    Returns ``paid`` for ``succeeded`` and ``failed`` for ``canceled`` or
    ``requires_payment_method``. Raises :class:`PaymentPollingTimeout` after
    ``max_attempts`` checks.
    """
    settings = get_settings()
    max_attempts = max_attempts or settings.PAYMENT_POLL_MAX_ATTEMPTS
    interval = settings.PAYMENT_POLL_INTERVAL_SECONDS if interval is None else interval

    for attempt in range(1, max_attempts + 1):
        intent = await stripe.retrieve_payment_intent(intent_id)
        if intent.status in TERMINAL_INTENT_STATUSES:
            return TERMINAL_INTENT_STATUSES[intent.status]
        if attempt < max_attempts:
            await asyncio.sleep(interval)

    raise PaymentPollingTimeout(intent_id, max_attempts)
