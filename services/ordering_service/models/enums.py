"""Enum definitions for ordering service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class OrderType(str, enum.Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"
    DINE_IN = "dine_in"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PaymentStatus(str, enum.Enum):
    UNSET = "unset"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class LoyaltyTransactionType(str, enum.Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    ADJUSTED = "adjusted"
    BONUS = "bonus"


class RewardType(str, enum.Enum):
    DISCOUNT_PERCENTAGE = "discount_percentage"
    DISCOUNT_FIXED = "discount_fixed"
    FREE_ITEM = "free_item"
    FREE_DELIVERY = "free_delivery"
    CUSTOM = "custom"


class Weekday(str, enum.Enum):
    """Weekday keys as stored in ``branches.opening_hours``.

    Declared Monday-first so ``list(Weekday)[date.weekday()]`` maps a date.
    """

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_index(cls, index: int) -> "Weekday":
        """Map ``datetime.weekday()`` (Monday=0) to a member."""
        return list(cls)[index % 7]
