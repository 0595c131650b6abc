"""Currently running promotions."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.db.session import get_async_db
from services.ordering_service.models import OrderType
from services.ordering_service.schemas import PromotionResponse
from services.ordering_service.services.promotions import (
    hero_promotions,
    list_active_promotions,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/promotions", tags=["promotions"])


@router.get("/active", response_model=list[PromotionResponse])
async def get_active_promotions(
    category_id: Optional[uuid.UUID] = None,
    branch_id: Optional[uuid.UUID] = None,
    order_type: Optional[OrderType] = None,
    db: AsyncSession = Depends(get_async_db),
):
    return await list_active_promotions(
        db, category_id=category_id, branch_id=branch_id, order_type=order_type
    )


@router.get("/hero", response_model=list[PromotionResponse])
async def get_hero_promotions(
    limit: int = Query(default=5, ge=1, le=20),
    db: AsyncSession = Depends(get_async_db),
):
    """Banner promotions for the home page."""
    return await hero_promotions(db, limit=limit)
