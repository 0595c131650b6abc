"""Unit tests for the order payment state machine."""

import uuid
from decimal import Decimal

import pytest
from libs.common.currency import euros_to_cents
from services.ordering_service.models import (
    LoyaltyTransaction,
    LoyaltyTransactionType,
    Order,
    PaymentStatus,
)
from services.ordering_service.services.payment_state import (
    InvalidPaymentTransition,
    OrderNotFound,
    PaymentNotSucceeded,
    PaymentPollingTimeout,
    can_transition,
    confirm_payment,
    create_payment_intent,
    handle_stripe_event,
    mark_order_paid,
    poll_payment_status,
    sources_of,
)
from sqlalchemy import func, select
from tests.conftest import FakeNotifier, stripe_event
from tests.factories import BranchFactory, OrderFactory, persist


async def _earned_count(db, order_id) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(LoyaltyTransaction)
        .where(
            LoyaltyTransaction.order_id == order_id,
            LoyaltyTransaction.transaction_type == LoyaltyTransactionType.EARNED,
        )
    )
    return result.scalar_one()


async def _status(db, order_id) -> PaymentStatus:
    order = await db.get(Order, order_id, populate_existing=True)
    return order.payment_status


async def _pending_order(db, fake_stripe, **overrides) -> Order:
    order = await persist(db, OrderFactory.create(**overrides))
    await create_payment_intent(db, order, fake_stripe)
    return await db.get(Order, order.id, populate_existing=True)


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_transition_table():
    assert can_transition(PaymentStatus.UNSET, PaymentStatus.PENDING)
    assert can_transition(PaymentStatus.FAILED, PaymentStatus.PENDING)
    assert can_transition(PaymentStatus.PAID, PaymentStatus.REFUNDED)
    assert not can_transition(PaymentStatus.PAID, PaymentStatus.FAILED)
    assert not can_transition(PaymentStatus.PAID, PaymentStatus.PENDING)
    assert not can_transition(PaymentStatus.UNSET, PaymentStatus.PAID)
    for target in PaymentStatus:
        assert not can_transition(PaymentStatus.REFUNDED, target)

    assert set(sources_of(PaymentStatus.PAID)) == {
        PaymentStatus.PENDING,
        PaymentStatus.FAILED,
    }
    assert sources_of(PaymentStatus.REFUNDED) == [PaymentStatus.PAID]


@pytest.mark.unit
@pytest.mark.parametrize(
    "euros, cents",
    [("24.70", 2470), ("10.005", 1001), ("0.01", 1), ("99.994", 9999)],
)
def test_euros_to_cents_rounds_half_up(euros, cents):
    assert euros_to_cents(Decimal(euros)) == cents


# ---------------------------------------------------------------------------
# create_payment_intent
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_intent_moves_order_to_pending(db_session, fake_stripe):
    order = await persist(db_session, OrderFactory.create(total_amount=Decimal("24.70")))

    intent = await create_payment_intent(db_session, order, fake_stripe)

    assert intent.client_secret
    created = fake_stripe.created[0]
    assert created["amount"] == 2470
    assert created["currency"] == "eur"
    assert created["payment_method_types"] == ["card"]
    assert created["metadata"] == {
        "order_id": str(order.id),
        "order_number": order.order_number,
    }

    refreshed = await db_session.get(Order, order.id, populate_existing=True)
    assert refreshed.payment_status == PaymentStatus.PENDING
    assert refreshed.stripe_payment_intent_id == intent.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pending_order_reuses_existing_intent(db_session, fake_stripe):
    order = await _pending_order(db_session, fake_stripe)
    again = await create_payment_intent(db_session, order, fake_stripe)
    assert again.id == order.stripe_payment_intent_id
    assert len(fake_stripe.created) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_paid_order_cannot_get_new_intent(db_session, fake_stripe):
    order = await persist(
        db_session, OrderFactory.create(payment_status=PaymentStatus.PAID)
    )
    with pytest.raises(InvalidPaymentTransition):
        await create_payment_intent(db_session, order, fake_stripe)
    assert fake_stripe.created == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_zero_total_order_rejected(db_session, fake_stripe):
    order = await persist(db_session, OrderFactory.create(total_amount=Decimal("0.00")))
    with pytest.raises(ValueError):
        await create_payment_intent(db_session, order, fake_stripe)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_order_can_retry_with_new_intent(db_session, fake_stripe):
    order = await _pending_order(db_session, fake_stripe)
    first_intent = order.stripe_payment_intent_id
    await handle_stripe_event(
        db_session,
        stripe_event(
            "payment_intent.payment_failed",
            {"id": first_intent, "last_payment_error": {"message": "Card declined"}},
        ),
        FakeNotifier(),
    )
    failed = await db_session.get(Order, order.id, populate_existing=True)
    assert failed.payment_status == PaymentStatus.FAILED
    assert failed.last_payment_error == "Card declined"

    retry = await create_payment_intent(db_session, failed, fake_stripe)
    refreshed = await db_session.get(Order, order.id, populate_existing=True)
    assert retry.id != first_intent
    assert refreshed.payment_status == PaymentStatus.PENDING
    assert refreshed.stripe_payment_intent_id == retry.id
    assert refreshed.last_payment_error is None


# ---------------------------------------------------------------------------
# confirm_payment / mark_order_paid
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_marks_paid_awards_points_and_emails(
    db_session, fake_stripe, fake_notifier
):
    branch = await persist(db_session, BranchFactory.create())
    order = await _pending_order(
        db_session,
        fake_stripe,
        customer_id=uuid.uuid4(),
        branch_id=branch.id,
        total_amount=Decimal("23.70"),
    )
    fake_stripe.set_status(order.stripe_payment_intent_id, "succeeded")

    paid = await confirm_payment(
        db_session, order.id, order.stripe_payment_intent_id, fake_stripe, fake_notifier
    )

    assert paid.payment_status == PaymentStatus.PAID
    assert paid.paid_at is not None
    assert paid.confirmation_sent_at is not None
    assert fake_notifier.sent == [order.order_number]
    assert await _earned_count(db_session, order.id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_rejects_unsucceeded_intent(db_session, fake_stripe, fake_notifier):
    order = await _pending_order(db_session, fake_stripe)

    with pytest.raises(PaymentNotSucceeded) as exc:
        await confirm_payment(
            db_session,
            order.id,
            order.stripe_payment_intent_id,
            fake_stripe,
            fake_notifier,
        )
    assert exc.value.intent_status == "requires_payment_method"
    assert await _status(db_session, order.id) == PaymentStatus.PENDING
    assert fake_notifier.sent == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_rejects_foreign_intent(db_session, fake_stripe, fake_notifier):
    order = await _pending_order(db_session, fake_stripe)
    fake_stripe.add_intent("pi_someone_else", status="succeeded")

    with pytest.raises(PaymentNotSucceeded):
        await confirm_payment(
            db_session, order.id, "pi_someone_else", fake_stripe, fake_notifier
        )
    assert await _status(db_session, order.id) == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_unknown_order(db_session, fake_stripe, fake_notifier):
    with pytest.raises(OrderNotFound):
        await confirm_payment(
            db_session, uuid.uuid4(), "pi_x", fake_stripe, fake_notifier
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_and_webhook_race_has_one_winner(
    db_session, fake_stripe, fake_notifier
):
    order = await _pending_order(db_session, fake_stripe, customer_id=uuid.uuid4())
    intent_id = order.stripe_payment_intent_id
    fake_stripe.set_status(intent_id, "succeeded")

    # The webhook lands while the confirmation is waiting on Stripe
    async def deliver_webhook(_intent_id):
        await handle_stripe_event(
            db_session,
            stripe_event("payment_intent.succeeded", {"id": intent_id}),
            fake_notifier,
        )

    fake_stripe.on_next_retrieve(deliver_webhook)

    paid = await confirm_payment(
        db_session, order.id, intent_id, fake_stripe, fake_notifier
    )

    assert paid.payment_status == PaymentStatus.PAID
    assert fake_notifier.sent == [order.order_number]
    assert await _earned_count(db_session, order.id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirm_on_paid_order_is_a_no_op(db_session, fake_stripe, fake_notifier):
    order = await _pending_order(db_session, fake_stripe)
    fake_stripe.set_status(order.stripe_payment_intent_id, "succeeded")
    await confirm_payment(
        db_session, order.id, order.stripe_payment_intent_id, fake_stripe, fake_notifier
    )
    retrievals = len(fake_stripe.retrievals)

    await confirm_payment(
        db_session, order.id, order.stripe_payment_intent_id, fake_stripe, fake_notifier
    )
    assert len(fake_stripe.retrievals) == retrievals
    assert fake_notifier.sent == [order.order_number]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_email_leaves_order_paid(db_session, fake_stripe):
    notifier = FakeNotifier(succeed=False)
    order = await _pending_order(db_session, fake_stripe)

    assert await mark_order_paid(db_session, order.id, notifier) is True

    refreshed = await db_session.get(Order, order.id, populate_existing=True)
    assert refreshed.payment_status == PaymentStatus.PAID
    assert refreshed.confirmation_sent_at is None


class RaisingNotifier(FakeNotifier):
    async def send_order_confirmation(self, order, branch=None) -> bool:
        raise RuntimeError("mail down")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_crashing_email_does_not_fail_confirmation(db_session, fake_stripe):
    order = await _pending_order(
        db_session, fake_stripe, customer_id=uuid.uuid4(), total_amount=Decimal("10.00")
    )
    fake_stripe.set_status(order.stripe_payment_intent_id, "succeeded")

    paid = await confirm_payment(
        db_session,
        order.id,
        order.stripe_payment_intent_id,
        fake_stripe,
        RaisingNotifier(),
    )

    assert paid.payment_status == PaymentStatus.PAID
    assert paid.confirmation_sent_at is None
    assert await _earned_count(db_session, order.id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unset_order_cannot_be_marked_paid(db_session, fake_notifier):
    order = await persist(db_session, OrderFactory.create())
    assert await mark_order_paid(db_session, order.id, fake_notifier) is False
    assert await _status(db_session, order.id) == PaymentStatus.UNSET


# ---------------------------------------------------------------------------
# Webhook events
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_success_webhook_is_idempotent(
    db_session, fake_stripe, fake_notifier
):
    order = await _pending_order(db_session, fake_stripe, customer_id=uuid.uuid4())
    event = stripe_event(
        "payment_intent.succeeded", {"id": order.stripe_payment_intent_id}
    )

    await handle_stripe_event(db_session, event, fake_notifier)
    await handle_stripe_event(db_session, event, fake_notifier)

    assert await _status(db_session, order.id) == PaymentStatus.PAID
    assert fake_notifier.sent == [order.order_number]
    assert await _earned_count(db_session, order.id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_late_failure_does_not_unpay_order(db_session, fake_stripe, fake_notifier):
    order = await _pending_order(db_session, fake_stripe)
    intent_id = order.stripe_payment_intent_id

    await handle_stripe_event(
        db_session,
        stripe_event("payment_intent.succeeded", {"id": intent_id}),
        fake_notifier,
    )
    await handle_stripe_event(
        db_session,
        stripe_event("payment_intent.payment_failed", {"id": intent_id}),
        fake_notifier,
    )
    assert await _status(db_session, order.id) == PaymentStatus.PAID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_only_applies_to_paid_orders(
    db_session, fake_stripe, fake_notifier
):
    order = await _pending_order(db_session, fake_stripe)
    intent_id = order.stripe_payment_intent_id
    refund = stripe_event("charge.refunded", {"id": "ch_1", "payment_intent": intent_id})

    await handle_stripe_event(db_session, refund, fake_notifier)
    assert await _status(db_session, order.id) == PaymentStatus.PENDING

    await handle_stripe_event(
        db_session,
        stripe_event("payment_intent.succeeded", {"id": intent_id}),
        fake_notifier,
    )
    await handle_stripe_event(db_session, refund, fake_notifier)

    refunded = await db_session.get(Order, order.id, populate_existing=True)
    assert refunded.payment_status == PaymentStatus.REFUNDED
    assert refunded.refunded_at is not None

    # Terminal: a late success does nothing
    await handle_stripe_event(
        db_session,
        stripe_event("payment_intent.succeeded", {"id": intent_id}),
        fake_notifier,
    )
    assert await _status(db_session, order.id) == PaymentStatus.REFUNDED
    assert len(fake_notifier.sent) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_intents_and_event_types_are_ignored(db_session, fake_notifier):
    order = await persist(db_session, OrderFactory.create())

    await handle_stripe_event(
        db_session,
        stripe_event("payment_intent.succeeded", {"id": "pi_unknown"}),
        fake_notifier,
    )
    await handle_stripe_event(
        db_session, stripe_event("customer.created", {"id": "cus_1"}), fake_notifier
    )
    await handle_stripe_event(db_session, {"type": "payment_intent.succeeded"}, fake_notifier)

    assert await _status(db_session, order.id) == PaymentStatus.UNSET
    assert fake_notifier.sent == []


# ---------------------------------------------------------------------------
# poll_payment_status
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_poll_until_succeeded(fake_stripe):
    fake_stripe.add_intent("pi_poll", status="processing")
    fake_stripe.queue_statuses("pi_poll", ["processing", "requires_action", "succeeded"])

    status = await poll_payment_status(fake_stripe, "pi_poll", max_attempts=5, interval=0)
    assert status == PaymentStatus.PAID
    assert fake_stripe.retrievals == ["pi_poll"] * 3


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("final", ["canceled", "requires_payment_method"])
async def test_poll_reports_failure(fake_stripe, final):
    fake_stripe.add_intent("pi_poll", status=final)
    status = await poll_payment_status(fake_stripe, "pi_poll", max_attempts=3, interval=0)
    assert status == PaymentStatus.FAILED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_poll_times_out(fake_stripe):
    fake_stripe.add_intent("pi_poll", status="processing")

    with pytest.raises(PaymentPollingTimeout) as exc:
        await poll_payment_status(fake_stripe, "pi_poll", max_attempts=4, interval=0)
    assert exc.value.attempts == 4
    assert len(fake_stripe.retrievals) == 4
