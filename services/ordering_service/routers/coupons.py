"""Coupon code preview."""

from fastapi import APIRouter, Depends
from libs.db.session import get_async_db
from services.ordering_service.schemas import (
    CouponValidateRequest,
    CouponValidateResponse,
)
from services.ordering_service.services.coupons import validate_coupon
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=CouponValidateResponse)
async def validate_coupon_code(
    payload: CouponValidateRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Check a coupon code against an order without using it up.
    Rejections come back as ``valid: false`` with a reason code.
    Does NOT increment usage count.
    """
    result = await validate_coupon(
        db,
        code=payload.code,
        order_type=payload.order_type,
        branch_id=payload.branch_id,
        order_amount=payload.order_amount,
    )
    return CouponValidateResponse(
        valid=result.valid,
        code=result.code,
        reason=result.reason.value if result.reason else None,
        message=result.message,
        discount_amount=result.discount_amount,
        final_total=result.final_total,
    )
