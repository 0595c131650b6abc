"""Loyalty reward catalog and the append-only points ledger."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import JSONBType, UTCDateTime
from services.ordering_service.models.enums import (
    LoyaltyTransactionType,
    RewardType,
    enum_values,
)
from sqlalchemy import Boolean
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class LoyaltyReward(Base):
    """Rewards customers can redeem points for."""

    __tablename__ = "loyalty_rewards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    points_required: Mapped[int] = mapped_column(Integer, nullable=False)

    reward_type: Mapped[RewardType] = mapped_column(
        SAEnum(
            RewardType,
            name="loyalty_reward_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    discount_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    discount_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    free_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    min_order_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )

    # None = unlimited
    max_uses_per_customer: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    allowed_branches: Mapped[Optional[list]] = mapped_column(JSONBType, nullable=True)
    pickup_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    delivery_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    valid_from: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )
    valid_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)

    def __repr__(self) -> str:
        return f"<LoyaltyReward {self.name} ({self.points_required} pts)>"


class LoyaltyTransaction(Base):
    """Immutable points ledger. Rows are appended, never updated or deleted."""

    __tablename__ = "loyalty_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    transaction_type: Mapped[LoyaltyTransactionType] = mapped_column(
        SAEnum(
            LoyaltyTransactionType,
            name="loyalty_transaction_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    # Signed delta: positive for earned/bonus, negative for redeemed/expired
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    # Per-customer position in the ledger, 1-based and gapless
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    reward_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    # 1-based count of this customer's redemptions of reward_id
    redemption_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("customer_id", "sequence", name="uq_loyalty_ledger_sequence"),
        UniqueConstraint(
            "customer_id",
            "reward_id",
            "redemption_number",
            name="uq_loyalty_redemption_slot",
        ),
        UniqueConstraint(
            "order_id", "transaction_type", name="uq_loyalty_order_transaction"
        ),
        Index("ix_loyalty_transactions_customer_created", "customer_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LoyaltyTransaction {self.transaction_type.value} "
            f"{self.points:+d} -> {self.balance_after}>"
        )
