"""Coupon code validation and usage accounting.

Validation is read-only: it decides whether a code can be used for an order
context and how much it takes off. Usage is only counted by
:func:`consume_coupon` when an order is actually placed, and that count is
enforced by a conditional update so concurrent checkouts can never push a
coupon past its limit.
"""

import enum
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.common.currency import ZERO, round_cents, to_decimal
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.ordering_service.models import CouponCode, OrderType
from services.ordering_service.services.promotions import raw_discount
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class CouponRejection(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    EXPIRED_OR_NOT_YET_VALID = "EXPIRED_OR_NOT_YET_VALID"
    USAGE_LIMIT_EXCEEDED = "USAGE_LIMIT_EXCEEDED"
    MIN_ORDER_NOT_MET = "MIN_ORDER_NOT_MET"
    NOT_AVAILABLE_FOR_CONTEXT = "NOT_AVAILABLE_FOR_CONTEXT"
    VALIDATION_ERROR = "VALIDATION_ERROR"


REJECTION_MESSAGES = {
    CouponRejection.NOT_FOUND: "Coupon not found",
    CouponRejection.EXPIRED_OR_NOT_YET_VALID: "Coupon has expired or is not yet valid",
    CouponRejection.USAGE_LIMIT_EXCEEDED: "Coupon usage limit exceeded",
    CouponRejection.MIN_ORDER_NOT_MET: "Minimum order amount not met",
    CouponRejection.NOT_AVAILABLE_FOR_CONTEXT: (
        "Coupon not available for this delivery type or branch"
    ),
    CouponRejection.VALIDATION_ERROR: "Error applying coupon",
}


class CouponUsageExceeded(Exception):
    """Raised when a coupon has no uses left at order placement."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Coupon {code} has reached its usage limit")


@dataclass(frozen=True)
class CouponValidation:
    valid: bool
    code: str
    order_amount: Decimal
    reason: Optional[CouponRejection] = None
    coupon_id: Optional[uuid.UUID] = None
    discount_amount: Decimal = ZERO

    @property
    def final_total(self) -> Decimal:
        return max(self.order_amount - self.discount_amount, ZERO)

    @property
    def message(self) -> str:
        if self.valid:
            return f"You save €{self.discount_amount:.2f}"
        return REJECTION_MESSAGES[self.reason]


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _reject(code: str, amount: Decimal, reason: CouponRejection) -> CouponValidation:
    return CouponValidation(valid=False, code=code, order_amount=amount, reason=reason)


def coupon_discount(coupon: CouponCode, order_amount: Decimal) -> Decimal:
    """Coupon discount on ``order_amount``, rounded half-up to cents."""
    discount = raw_discount(order_amount, coupon)
    discount = max(min(discount, order_amount), ZERO)
    return round_cents(discount)


def check_coupon(
    coupon: Optional[CouponCode],
    order_type: OrderType | str,
    branch_id: Optional[uuid.UUID | str],
    order_amount: Decimal,
) -> Optional[CouponRejection]:
    """First rule the coupon breaks for this order context, or None."""
    if coupon is None or not coupon.is_active:
        return CouponRejection.NOT_FOUND

    now = utc_now()
    if coupon.valid_from and coupon.valid_from > now:
        return CouponRejection.EXPIRED_OR_NOT_YET_VALID
    if coupon.valid_until and coupon.valid_until < now:
        return CouponRejection.EXPIRED_OR_NOT_YET_VALID

    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        return CouponRejection.USAGE_LIMIT_EXCEEDED

    if order_amount < to_decimal(coupon.min_order_amount):
        return CouponRejection.MIN_ORDER_NOT_MET

    if coupon.allowed_branches:
        allowed = {str(b) for b in coupon.allowed_branches}
        if branch_id is None or str(branch_id) not in allowed:
            return CouponRejection.NOT_AVAILABLE_FOR_CONTEXT
    if coupon.order_types:
        if OrderType(order_type).value not in coupon.order_types:
            return CouponRejection.NOT_AVAILABLE_FOR_CONTEXT

    return None


async def get_coupon_by_code(db: AsyncSession, code: str) -> Optional[CouponCode]:
    result = await db.execute(
        select(CouponCode).where(CouponCode.code == normalize_code(code))
    )
    return result.scalar_one_or_none()


async def validate_coupon(
    db: AsyncSession,
    code: str,
    order_type: OrderType | str,
    branch_id: Optional[uuid.UUID | str],
    order_amount: Decimal | float,
) -> CouponValidation:
    """Decide whether ``code`` applies to this order and what it takes off.

    Never raises for a bad code or a storage failure: both come back as a
    rejected :class:`CouponValidation`. Usage is not incremented.
    """
    normalized = normalize_code(code)
    amount = to_decimal(order_amount)

    try:
        coupon = await get_coupon_by_code(db, normalized)
        reason = check_coupon(coupon, order_type, branch_id, amount)
    except (SQLAlchemyError, ValueError) as e:
        logger.error("Coupon validation failed for %s: %s", normalized, e)
        return _reject(normalized, amount, CouponRejection.VALIDATION_ERROR)

    if reason is not None:
        logger.info(
            "Coupon %s rejected: %s",
            normalized,
            reason.value,
            extra={"extra_fields": {"code": normalized, "reason": reason.value}},
        )
        return _reject(normalized, amount, reason)

    return CouponValidation(
        valid=True,
        code=coupon.code,
        order_amount=amount,
        coupon_id=coupon.id,
        discount_amount=coupon_discount(coupon, amount),
    )


async def consume_coupon(db: AsyncSession, coupon_id: uuid.UUID) -> None:
    """Count one use of a coupon, refusing once the limit is reached.

    The limit is checked inside the UPDATE itself, so two checkouts racing for
    the last use cannot both succeed. Does not commit.
    """
    result = await db.execute(
        update(CouponCode)
        .where(
            CouponCode.id == coupon_id,
            (CouponCode.usage_limit.is_(None))
            | (CouponCode.usage_count < CouponCode.usage_limit),
        )
        .values(usage_count=CouponCode.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        coupon = await db.get(CouponCode, coupon_id)
        code = coupon.code if coupon else str(coupon_id)
        logger.warning("Coupon %s has no uses left", code)
        raise CouponUsageExceeded(code)
