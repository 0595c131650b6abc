"""Branch listing and open/closed status."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from libs.db.session import get_async_db
from services.ordering_service.models import Branch
from services.ordering_service.schemas import (
    BranchResponse,
    BranchStatusResponse,
    NextOpeningResponse,
    OpenBranchesResponse,
)
from services.ordering_service.services.business_hours import (
    branch_status,
    format_branch_hours,
    is_any_branch_open,
    is_ordering_available,
    nearest_open_branch,
    open_branches,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/branches", tags=["branches"])


async def _active_branches(db: AsyncSession) -> list[Branch]:
    result = await db.execute(
        select(Branch)
        .where(Branch.is_active.is_(True))
        .order_by(Branch.display_order.asc(), Branch.name.asc())
    )
    return list(result.scalars().all())


@router.get("", response_model=list[BranchResponse])
async def list_branches(db: AsyncSession = Depends(get_async_db)):
    """Active branches in display order."""
    return await _active_branches(db)


@router.get("/open", response_model=OpenBranchesResponse)
async def list_open_branches(db: AsyncSession = Depends(get_async_db)):
    """Branches open right now, plus the first one to send customers to."""
    branches = await _active_branches(db)
    nearest = nearest_open_branch(branches)
    return OpenBranchesResponse(
        any_open=is_any_branch_open(branches),
        nearest=BranchResponse.model_validate(nearest) if nearest else None,
        branches=[BranchResponse.model_validate(b) for b in open_branches(branches)],
    )


@router.get("/{branch_id}/status", response_model=BranchStatusResponse)
async def get_branch_status(
    branch_id: uuid.UUID,
    language: Optional[str] = Query(default="fi", pattern="^(fi|en)$"),
    db: AsyncSession = Depends(get_async_db),
):
    branch = await db.get(Branch, branch_id)
    if not branch:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Branch not found"
        )

    current = branch_status(branch)
    next_opening = None
    if current.next_opening:
        next_opening = NextOpeningResponse(
            weekday=current.next_opening.weekday.value,
            day=current.next_opening.day,
            day_en=current.next_opening.day_en,
            time=current.next_opening.time,
        )

    return BranchStatusResponse(
        branch=BranchResponse.model_validate(branch),
        is_open=current.is_open,
        ordering_available=is_ordering_available(branch),
        next_opening=next_opening,
        hours=format_branch_hours(branch, language),
    )
