import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from services.ordering_service.models import (
    DiscountType,
    LoyaltyTransactionType,
    OrderType,
    PaymentStatus,
    RewardType,
)

# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


class NextOpeningResponse(BaseModel):
    weekday: str
    day: str  # Finnish day name
    day_en: str
    time: str  # HH:MM


class BranchHoursRow(BaseModel):
    day: str
    hours: str


class BranchResponse(BaseModel):
    id: uuid.UUID
    name: str
    name_en: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool
    display_order: int
    opening_hours: Optional[dict] = None

    model_config = ConfigDict(from_attributes=True)


class BranchStatusResponse(BaseModel):
    branch: BranchResponse
    is_open: bool
    ordering_available: bool
    next_opening: Optional[NextOpeningResponse] = None
    hours: list[BranchHoursRow] = []


class OpenBranchesResponse(BaseModel):
    any_open: bool
    nearest: Optional[BranchResponse] = None
    branches: list[BranchResponse]


# ---------------------------------------------------------------------------
# Promotions
# ---------------------------------------------------------------------------


class PromotionResponse(BaseModel):
    id: uuid.UUID
    name: str
    name_en: Optional[str] = None
    description: Optional[str] = None
    description_en: Optional[str] = None
    discount_type: DiscountType
    discount_value: float
    category_id: Optional[uuid.UUID] = None
    branch_id: Optional[uuid.UUID] = None
    min_order_amount: Optional[float] = None
    max_discount_amount: Optional[float] = None
    pickup_only: bool
    delivery_only: bool
    dine_in_only: bool
    start_date: datetime
    end_date: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    order_type: OrderType
    branch_id: Optional[uuid.UUID] = None
    order_amount: float = Field(ge=0)


class CouponValidateResponse(BaseModel):
    valid: bool
    code: str
    reason: Optional[str] = None  # CouponRejection value when invalid
    message: str
    discount_amount: float = 0
    final_total: float


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


class BlacklistCheckRequest(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None


class BlacklistCheckResponse(BaseModel):
    blocked: bool
    reason: Optional[str] = None
    blocked_at: Optional[datetime] = None


class OrderLineItem(BaseModel):
    name: str
    quantity: int = Field(default=1, ge=1)
    price: float = Field(ge=0)  # unit price
    category_id: Optional[uuid.UUID] = None
    toppings: list[str] = []


class QuoteRequest(BaseModel):
    order_type: OrderType
    branch_id: Optional[uuid.UUID] = None
    items: list[OrderLineItem] = Field(min_length=1)
    delivery_fee: float = Field(default=0, ge=0)
    coupon_code: Optional[str] = None


class QuoteResponse(BaseModel):
    subtotal: float
    delivery_fee: float
    promotion_discount: float
    coupon_code: Optional[str] = None
    coupon_discount: float = 0
    coupon_error: Optional[str] = None
    total: float
    loyalty_points: int
    ordering_available: Optional[bool] = None  # None when no branch given


class OrderCreateRequest(QuoteRequest):
    customer_id: Optional[uuid.UUID] = None  # signed-in customers earn points
    customer_name: str = Field(min_length=1, max_length=255)
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = Field(default=None, max_length=40)
    delivery_address: Optional[str] = None
    special_instructions: Optional[str] = None
    payment_method: str = Field(default="online", max_length=32)

    @model_validator(mode="after")
    def _delivery_needs_address(self):
        if self.order_type == OrderType.DELIVERY and not self.delivery_address:
            raise ValueError("delivery_address is required for delivery orders")
        return self


class OrderResponse(BaseModel):
    id: uuid.UUID
    order_number: str
    customer_id: Optional[uuid.UUID] = None
    branch_id: Optional[uuid.UUID] = None
    order_type: OrderType
    subtotal: float
    delivery_fee: float
    discount_amount: float
    coupon_code: Optional[str] = None
    total_amount: float
    payment_method: str
    payment_status: PaymentStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Loyalty
# ---------------------------------------------------------------------------


class LoyaltyRewardResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    points_required: int
    reward_type: RewardType
    discount_percentage: Optional[float] = None
    discount_amount: Optional[float] = None
    free_item_id: Optional[uuid.UUID] = None
    min_order_amount: float
    max_uses_per_customer: Optional[int] = None
    pickup_only: bool
    delivery_only: bool
    valid_until: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LoyaltyTransactionResponse(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    transaction_type: LoyaltyTransactionType
    points: int
    balance_after: int
    sequence: int
    order_id: Optional[uuid.UUID] = None
    reward_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LoyaltyBalanceResponse(BaseModel):
    customer_id: uuid.UUID
    points: int


class PointsPreviewResponse(BaseModel):
    order_amount: float
    order_type: OrderType
    points: int


class RedeemRewardRequest(BaseModel):
    reward_id: uuid.UUID


class RedeemRewardResponse(BaseModel):
    transaction: LoyaltyTransactionResponse
    reward: LoyaltyRewardResponse
    balance: int


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class CreatePaymentIntentRequest(BaseModel):
    order_id: uuid.UUID
    payment_method_types: Optional[list[str]] = None  # defaults to settings


class PaymentIntentResponse(BaseModel):
    order_id: uuid.UUID
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount: int  # in cents
    currency: str
    status: str  # Stripe intent status


class ConfirmPaymentRequest(BaseModel):
    order_id: uuid.UUID
    payment_intent_id: str = Field(min_length=1)


class OrderPaymentStatusResponse(BaseModel):
    order_id: uuid.UUID = Field(validation_alias="id")
    order_number: str
    payment_status: PaymentStatus
    stripe_payment_intent_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    confirmation_sent_at: Optional[datetime] = None
    last_payment_error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
