"""Loyalty points: accrual formula, append-only ledger and reward redemption.

The ledger (``loyalty_transactions``) is the source of truth: a customer's
balance is the ``balance_after`` of their newest entry. Entries are only ever
appended.

Every entry claims the next per-customer ``sequence`` number, guarded by a
unique constraint. Two writers that read the same head race for the same
number; the loser's insert fails and it retries against the new head, so
``balance_after`` is always the running sum of the customer's entries.

Per-customer reward limits work the same way: every limited redemption claims
a numbered slot ``(customer_id, reward_id, redemption_number)``.
"""

import enum
import math
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.common.cache import view_cache
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.ordering_service.models import (
    LoyaltyReward,
    LoyaltyTransaction,
    LoyaltyTransactionType,
    Order,
    OrderType,
)
from services.ordering_service.schemas import LoyaltyTransactionResponse
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Accrual config
# ---------------------------------------------------------------------------
POINTS_PER_EURO = 1
ORDER_TYPE_MULTIPLIERS = {
    OrderType.PICKUP: Decimal("1.5"),
    OrderType.DELIVERY: Decimal("1.0"),
    OrderType.DINE_IN: Decimal("1.2"),
}
TRANSACTION_HISTORY_LIMIT = 50
VIEW_TTL_SECONDS = 300
LEDGER_WRITE_ATTEMPTS = 3


class RedemptionRejection(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    MAX_USES_REACHED = "MAX_USES_REACHED"
    REDEMPTION_FAILED = "REDEMPTION_FAILED"


REDEMPTION_MESSAGES = {
    RedemptionRejection.NOT_FOUND: "Reward not found",
    RedemptionRejection.INSUFFICIENT_POINTS: "Not enough points",
    RedemptionRejection.MAX_USES_REACHED: "Maximum uses reached for this reward",
    RedemptionRejection.REDEMPTION_FAILED: "Could not redeem reward, please try again",
}


class LoyaltyRedemptionError(Exception):
    """A redemption was refused. Nothing was written to the ledger."""

    def __init__(self, reason: RedemptionRejection):
        self.reason = reason
        self.message = REDEMPTION_MESSAGES[reason]
        super().__init__(self.message)


@dataclass(frozen=True)
class LedgerHead:
    """Newest ledger entry of a customer; zeros when there is none."""

    balance: int = 0
    sequence: int = 0


def transactions_cache_key(customer_id: uuid.UUID) -> str:
    return f"loyalty-transactions:{customer_id}"


def customer_cache_key(customer_id: uuid.UUID) -> str:
    return f"customer:{customer_id}"


async def invalidate_customer_views(customer_id: uuid.UUID) -> None:
    await view_cache.clear_prefix(transactions_cache_key(customer_id))
    await view_cache.clear_prefix(customer_cache_key(customer_id))


# ---------------------------------------------------------------------------
# Accrual
# ---------------------------------------------------------------------------


def calculate_loyalty_points(
    order_amount: Decimal | float, order_type: OrderType | str = OrderType.DELIVERY
) -> int:
    """Points earned for an order: whole euros times the order-type multiplier."""
    base_points = max(math.floor(order_amount), 0) * POINTS_PER_EURO
    multiplier = ORDER_TYPE_MULTIPLIERS[OrderType(order_type)]
    return math.floor(base_points * multiplier)


# ---------------------------------------------------------------------------
# Ledger reads
# ---------------------------------------------------------------------------


async def read_ledger_head(db: AsyncSession, customer_id: uuid.UUID) -> LedgerHead:
    result = await db.execute(
        select(LoyaltyTransaction.balance_after, LoyaltyTransaction.sequence)
        .where(LoyaltyTransaction.customer_id == customer_id)
        .order_by(LoyaltyTransaction.sequence.desc())
        .limit(1)
    )
    row = result.first()
    if row is None:
        return LedgerHead()
    return LedgerHead(balance=row.balance_after, sequence=row.sequence)


async def read_ledger_balance(db: AsyncSession, customer_id: uuid.UUID) -> int:
    return (await read_ledger_head(db, customer_id)).balance


async def get_points_balance(db: AsyncSession, customer_id: uuid.UUID) -> int:
    """Current balance. A failed read shows 0 rather than breaking the page."""
    cached = await view_cache.get(customer_cache_key(customer_id))
    if cached is not None:
        return cached
    try:
        balance = await read_ledger_balance(db, customer_id)
    except SQLAlchemyError as e:
        logger.error("Failed to read loyalty balance for %s: %s", customer_id, e)
        return 0
    await view_cache.set(customer_cache_key(customer_id), balance, VIEW_TTL_SECONDS)
    return balance


async def list_transactions(
    db: AsyncSession, customer_id: uuid.UUID
) -> list[LoyaltyTransactionResponse]:
    """Newest ledger entries for a customer."""
    key = transactions_cache_key(customer_id)
    cached = await view_cache.get(key)
    if cached is not None:
        return [LoyaltyTransactionResponse.model_validate(row) for row in cached]

    result = await db.execute(
        select(LoyaltyTransaction)
        .where(LoyaltyTransaction.customer_id == customer_id)
        .order_by(LoyaltyTransaction.sequence.desc())
        .limit(TRANSACTION_HISTORY_LIMIT)
    )
    rows = [
        LoyaltyTransactionResponse.model_validate(txn)
        for txn in result.scalars().all()
    ]
    await view_cache.set(
        key, [row.model_dump(mode="json") for row in rows], VIEW_TTL_SECONDS
    )
    return rows


async def list_available_rewards(db: AsyncSession) -> list[LoyaltyReward]:
    """Active, unexpired rewards, cheapest first."""
    now = utc_now()
    result = await db.execute(
        select(LoyaltyReward)
        .where(
            LoyaltyReward.is_active.is_(True),
            or_(LoyaltyReward.valid_until.is_(None), LoyaltyReward.valid_until >= now),
        )
        .order_by(LoyaltyReward.points_required.asc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Ledger writes
# ---------------------------------------------------------------------------


async def append_ledger_entry(
    db: AsyncSession,
    *,
    customer_id: uuid.UUID,
    transaction_type: LoyaltyTransactionType,
    points: int,
    order_id: Optional[uuid.UUID] = None,
    description: Optional[str] = None,
) -> LoyaltyTransaction:
    """Append one entry on top of the current head.

    Does not commit. If another writer appended first, the flush raises
    ``IntegrityError`` on ``uq_loyalty_ledger_sequence`` and the caller
    retries.
    """
    head = await read_ledger_head(db, customer_id)
    txn = LoyaltyTransaction(
        customer_id=customer_id,
        transaction_type=transaction_type,
        points=points,
        balance_after=head.balance + points,
        sequence=head.sequence + 1,
        order_id=order_id,
        description=description,
    )
    db.add(txn)
    await db.flush()
    return txn


async def _order_already_credited(db: AsyncSession, order_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(func.count())
        .select_from(LoyaltyTransaction)
        .where(
            LoyaltyTransaction.order_id == order_id,
            LoyaltyTransaction.transaction_type == LoyaltyTransactionType.EARNED,
        )
    )
    return result.scalar_one() > 0


async def award_order_points(
    db: AsyncSession, order: Order
) -> Optional[LoyaltyTransaction]:
    """Credit points for a paid order, at most once per order. Commits.

    Returns None for guest orders, zero-point orders and repeat calls.
    """
    if order.customer_id is None:
        return None

    points = calculate_loyalty_points(order.total_amount, order.order_type)
    if points <= 0:
        return None

    customer_id, order_id = order.customer_id, order.id
    order_number = order.order_number
    for attempt in range(1, LEDGER_WRITE_ATTEMPTS + 1):
        try:
            txn = await append_ledger_entry(
                db,
                customer_id=customer_id,
                transaction_type=LoyaltyTransactionType.EARNED,
                points=points,
                order_id=order_id,
                description=f"Order {order_number}",
            )
            await db.commit()
            break
        except IntegrityError:
            await db.rollback()
        if await _order_already_credited(db, order_id):
            logger.info("Points for order %s already awarded", order_number)
            return None
        logger.warning(
            "Ledger of customer %s moved while awarding order %s, retrying (%d/%d)",
            customer_id,
            order_number,
            attempt,
            LEDGER_WRITE_ATTEMPTS,
        )
    else:
        logger.error(
            "Gave up awarding %d points for order %s after %d attempts",
            points,
            order_number,
            LEDGER_WRITE_ATTEMPTS,
        )
        return None

    await invalidate_customer_views(customer_id)
    logger.info(
        "Awarded %d points to customer %s for order %s (balance %d)",
        points,
        customer_id,
        order_number,
        txn.balance_after,
    )
    return txn


async def _count_redemptions(
    db: AsyncSession, customer_id: uuid.UUID, reward_id: uuid.UUID
) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(LoyaltyTransaction)
        .where(
            LoyaltyTransaction.customer_id == customer_id,
            LoyaltyTransaction.reward_id == reward_id,
            LoyaltyTransaction.transaction_type == LoyaltyTransactionType.REDEEMED,
        )
    )
    return result.scalar_one()


async def _slot_taken(
    db: AsyncSession, customer_id: uuid.UUID, reward_id: uuid.UUID, slot: int
) -> bool:
    result = await db.execute(
        select(func.count())
        .select_from(LoyaltyTransaction)
        .where(
            LoyaltyTransaction.customer_id == customer_id,
            LoyaltyTransaction.reward_id == reward_id,
            LoyaltyTransaction.redemption_number == slot,
        )
    )
    return result.scalar_one() > 0


async def redeem_reward(
    db: AsyncSession,
    *,
    customer_id: uuid.UUID,
    reward_id: uuid.UUID,
) -> tuple[LoyaltyTransaction, LoyaltyReward]:
    """Redeem ``reward_id`` against the customer's ledger balance.

    1. Reward must exist
    2. The ledger head, read in this transaction, must hold enough points
    3. Per-customer use limit must not be reached
    4. Append a ``redeemed`` entry claiming the next sequence number and,
       for limited rewards, the next redemption slot
    5. Invalidate cached views for the customer

    A lost sequence race re-runs the checks against the new head. Raises
    :class:`LoyaltyRedemptionError`; on any refusal or storage error nothing
    is written.
    """
    try:
        for attempt in range(1, LEDGER_WRITE_ATTEMPTS + 1):
            reward = await db.get(LoyaltyReward, reward_id)
            if reward is None:
                raise LoyaltyRedemptionError(RedemptionRejection.NOT_FOUND)
            points_required = reward.points_required
            max_uses = reward.max_uses_per_customer

            head = await read_ledger_head(db, customer_id)
            if head.balance < points_required:
                raise LoyaltyRedemptionError(RedemptionRejection.INSUFFICIENT_POINTS)

            slot = None
            if max_uses:
                used = await _count_redemptions(db, customer_id, reward_id)
                if used >= max_uses:
                    raise LoyaltyRedemptionError(RedemptionRejection.MAX_USES_REACHED)
                slot = used + 1

            txn = LoyaltyTransaction(
                customer_id=customer_id,
                transaction_type=LoyaltyTransactionType.REDEEMED,
                points=-points_required,
                balance_after=head.balance - points_required,
                sequence=head.sequence + 1,
                reward_id=reward_id,
                redemption_number=slot,
                description=f"Redeemed: {reward.name}",
            )
            db.add(txn)
            try:
                await db.commit()
                break
            except IntegrityError:
                await db.rollback()

            last_slot = slot is not None and slot == max_uses
            if last_slot and await _slot_taken(db, customer_id, reward_id, slot):
                logger.warning(
                    "Reward %s: a concurrent redemption took customer %s's last slot",
                    reward_id,
                    customer_id,
                )
                raise LoyaltyRedemptionError(RedemptionRejection.MAX_USES_REACHED)
            logger.warning(
                "Ledger of customer %s moved during redemption, retrying (%d/%d)",
                customer_id,
                attempt,
                LEDGER_WRITE_ATTEMPTS,
            )
        else:
            logger.error(
                "Gave up redeeming %s for %s after %d attempts",
                reward_id,
                customer_id,
                LEDGER_WRITE_ATTEMPTS,
            )
            raise LoyaltyRedemptionError(RedemptionRejection.REDEMPTION_FAILED)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Redemption of %s for %s failed: %s", reward_id, customer_id, e)
        raise LoyaltyRedemptionError(RedemptionRejection.REDEMPTION_FAILED) from e

    await db.refresh(txn)
    await invalidate_customer_views(customer_id)

    logger.info(
        "Customer %s redeemed %s for %d points, balance %d -> %d",
        customer_id,
        reward.name,
        points_required,
        head.balance,
        txn.balance_after,
    )
    return txn, reward
