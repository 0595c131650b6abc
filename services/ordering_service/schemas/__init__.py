"""Ordering Service schemas package."""

from services.ordering_service.schemas.main import (
    BlacklistCheckRequest,
    BlacklistCheckResponse,
    BranchHoursRow,
    BranchResponse,
    BranchStatusResponse,
    ConfirmPaymentRequest,
    CouponValidateRequest,
    CouponValidateResponse,
    CreatePaymentIntentRequest,
    LoyaltyBalanceResponse,
    LoyaltyRewardResponse,
    LoyaltyTransactionResponse,
    NextOpeningResponse,
    OpenBranchesResponse,
    OrderCreateRequest,
    OrderLineItem,
    OrderPaymentStatusResponse,
    OrderResponse,
    PaymentIntentResponse,
    PointsPreviewResponse,
    PromotionResponse,
    QuoteRequest,
    QuoteResponse,
    RedeemRewardRequest,
    RedeemRewardResponse,
)

__all__ = [
    "BlacklistCheckRequest",
    "BlacklistCheckResponse",
    "BranchHoursRow",
    "BranchResponse",
    "BranchStatusResponse",
    "ConfirmPaymentRequest",
    "CouponValidateRequest",
    "CouponValidateResponse",
    "CreatePaymentIntentRequest",
    "LoyaltyBalanceResponse",
    "LoyaltyRewardResponse",
    "LoyaltyTransactionResponse",
    "NextOpeningResponse",
    "OpenBranchesResponse",
    "OrderCreateRequest",
    "OrderLineItem",
    "OrderPaymentStatusResponse",
    "OrderResponse",
    "PaymentIntentResponse",
    "PointsPreviewResponse",
    "PromotionResponse",
    "QuoteRequest",
    "QuoteResponse",
    "RedeemRewardRequest",
    "RedeemRewardResponse",
]
