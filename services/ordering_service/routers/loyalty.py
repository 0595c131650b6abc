"""Loyalty points: balance, history, reward catalog and redemption."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from libs.db.session import get_async_db
from services.ordering_service.models import OrderType
from services.ordering_service.schemas import (
    LoyaltyBalanceResponse,
    LoyaltyRewardResponse,
    LoyaltyTransactionResponse,
    PointsPreviewResponse,
    RedeemRewardRequest,
    RedeemRewardResponse,
)
from services.ordering_service.services.loyalty_ops import (
    LoyaltyRedemptionError,
    RedemptionRejection,
    calculate_loyalty_points,
    get_points_balance,
    list_available_rewards,
    list_transactions,
    redeem_reward,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/loyalty", tags=["loyalty"])

_REJECTION_STATUS = {
    RedemptionRejection.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RedemptionRejection.INSUFFICIENT_POINTS: status.HTTP_400_BAD_REQUEST,
    RedemptionRejection.MAX_USES_REACHED: status.HTTP_400_BAD_REQUEST,
    RedemptionRejection.REDEMPTION_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@router.get("/rewards", response_model=list[LoyaltyRewardResponse])
async def get_rewards(db: AsyncSession = Depends(get_async_db)):
    return await list_available_rewards(db)


@router.get("/points-preview", response_model=PointsPreviewResponse)
async def preview_points(
    order_amount: float = Query(ge=0),
    order_type: OrderType = OrderType.DELIVERY,
):
    """Points an order of ``order_amount`` would earn."""
    return PointsPreviewResponse(
        order_amount=order_amount,
        order_type=order_type,
        points=calculate_loyalty_points(order_amount, order_type),
    )


@router.get("/{customer_id}/balance", response_model=LoyaltyBalanceResponse)
async def get_balance(customer_id: uuid.UUID, db: AsyncSession = Depends(get_async_db)):
    points = await get_points_balance(db, customer_id)
    return LoyaltyBalanceResponse(customer_id=customer_id, points=points)


@router.get(
    "/{customer_id}/transactions", response_model=list[LoyaltyTransactionResponse]
)
async def get_transactions(
    customer_id: uuid.UUID, db: AsyncSession = Depends(get_async_db)
):
    return await list_transactions(db, customer_id)


@router.post("/{customer_id}/redeem", response_model=RedeemRewardResponse)
async def redeem(
    customer_id: uuid.UUID,
    payload: RedeemRewardRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Redeem a reward against the customer's current balance.
    The balance is read from the ledger, never taken from the client.
    """
    try:
        txn, reward = await redeem_reward(
            db, customer_id=customer_id, reward_id=payload.reward_id
        )
    except LoyaltyRedemptionError as e:
        raise HTTPException(
            status_code=_REJECTION_STATUS[e.reason],
            detail={"reason": e.reason.value, "message": e.message},
        )

    return RedeemRewardResponse(
        transaction=LoyaltyTransactionResponse.model_validate(txn),
        reward=LoyaltyRewardResponse.model_validate(reward),
        balance=txn.balance_after,
    )
