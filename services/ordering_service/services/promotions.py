"""Promotion discounting and active-promotion lookups."""

import uuid
from decimal import Decimal
from typing import Optional, Protocol

from libs.common.currency import ZERO, to_decimal
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.ordering_service.models import DiscountType, OrderType, Promotion
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class DiscountRule(Protocol):
    discount_type: DiscountType
    discount_value: Decimal
    max_discount_amount: Optional[Decimal]


def raw_discount(price: Decimal, rule: DiscountRule) -> Decimal:
    """Percentage or fixed discount on ``price`` with the rule's cap applied.

    Shared by promotions and coupons.
    """
    value = to_decimal(rule.discount_value)
    if rule.discount_type == DiscountType.PERCENTAGE:
        discount = price * value / Decimal(100)
    else:
        discount = value

    cap = rule.max_discount_amount
    if cap is not None and discount > to_decimal(cap):
        discount = to_decimal(cap)
    return discount


def calculate_promotion_discount(
    price: Decimal | float,
    promotion: Promotion,
    order_total: Decimal | float | None = None,
) -> Decimal:
    """Discount a promotion gives on ``price``; always within ``[0, price]``."""
    price = to_decimal(price)
    if price <= ZERO:
        return ZERO

    min_order = promotion.min_order_amount
    if (
        min_order is not None
        and order_total is not None
        and to_decimal(order_total) < to_decimal(min_order)
    ):
        return ZERO

    discount = raw_discount(price, promotion)
    return max(min(discount, price), ZERO)


def promotion_applies_to_order_type(
    promotion: Promotion, order_type: OrderType | str
) -> bool:
    """Unrestricted when no flag is set; otherwise only the flagged types."""
    order_type = OrderType(order_type)
    if not (promotion.pickup_only or promotion.delivery_only or promotion.dine_in_only):
        return True
    return (
        (order_type == OrderType.PICKUP and promotion.pickup_only)
        or (order_type == OrderType.DELIVERY and promotion.delivery_only)
        or (order_type == OrderType.DINE_IN and promotion.dine_in_only)
    )


async def list_active_promotions(
    db: AsyncSession,
    category_id: Optional[uuid.UUID] = None,
    branch_id: Optional[uuid.UUID] = None,
    order_type: Optional[OrderType] = None,
) -> list[Promotion]:
    """Promotions running now, best discount first."""
    now = utc_now()
    query = select(Promotion).where(
        Promotion.is_active.is_(True),
        Promotion.start_date <= now,
        Promotion.end_date >= now,
    )
    if category_id:
        query = query.where(
            or_(Promotion.category_id.is_(None), Promotion.category_id == category_id)
        )
    if branch_id:
        query = query.where(
            or_(Promotion.branch_id.is_(None), Promotion.branch_id == branch_id)
        )

    result = await db.execute(query.order_by(Promotion.discount_value.desc()))
    promotions = list(result.scalars().all())

    if order_type:
        promotions = [
            p for p in promotions if promotion_applies_to_order_type(p, order_type)
        ]
    return promotions


async def hero_promotions(db: AsyncSession, limit: int = 5) -> list[Promotion]:
    """Top running promotions for the home page banner rotation."""
    now = utc_now()
    result = await db.execute(
        select(Promotion)
        .where(
            Promotion.is_active.is_(True),
            Promotion.start_date <= now,
            Promotion.end_date >= now,
        )
        .order_by(Promotion.discount_value.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


def best_promotion_discount(
    price: Decimal | float,
    promotions: list[Promotion],
    order_total: Decimal | float | None = None,
) -> tuple[Decimal, Optional[Promotion]]:
    """The single largest discount among ``promotions`` for one item."""
    best_amount, best = ZERO, None
    for promotion in promotions:
        amount = calculate_promotion_discount(price, promotion, order_total)
        if amount > best_amount:
            best_amount, best = amount, promotion
    return best_amount, best
