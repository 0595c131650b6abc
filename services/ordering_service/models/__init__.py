"""Ordering service models package.

Re-exports every model and enum so that ``Base.metadata`` sees all tables
on import and callers can write ``from services.ordering_service.models import Order``.
"""

from services.ordering_service.models.blacklist import CustomerBlacklist  # noqa: F401
from services.ordering_service.models.branch import Branch  # noqa: F401
from services.ordering_service.models.catalog import CouponCode, Promotion  # noqa: F401
from services.ordering_service.models.enums import (  # noqa: F401
    DiscountType,
    LoyaltyTransactionType,
    OrderType,
    PaymentStatus,
    RewardType,
    Weekday,
)
from services.ordering_service.models.loyalty import (  # noqa: F401
    LoyaltyReward,
    LoyaltyTransaction,
)
from services.ordering_service.models.order import Order  # noqa: F401
from services.ordering_service.models.schedule import (  # noqa: F401
    DayHours,
    WeeklySchedule,
)

__all__ = [
    # Enums
    "DiscountType",
    "LoyaltyTransactionType",
    "OrderType",
    "PaymentStatus",
    "RewardType",
    "Weekday",
    # Models
    "Branch",
    "CouponCode",
    "CustomerBlacklist",
    "LoyaltyReward",
    "LoyaltyTransaction",
    "Order",
    "Promotion",
    # Value types
    "DayHours",
    "WeeklySchedule",
]
