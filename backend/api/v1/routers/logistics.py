"""
Logistics Router - bulk ship / revert / delete of the caller's sale records.

Partial failure is normal here: each record succeeds or fails on its own
and the response lists which ones failed and why.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_profile, get_db
from db.models import Profile
from fulfillment.logistics import LogisticsService

router = APIRouter(prefix="/api/v1/logistics", tags=["logistics"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class BulkActionRequest(BaseModel):
    ids: list[UUID] = Field(..., min_length=1)


class BulkActionError(BaseModel):
    id: str
    error: str


class BulkActionResponse(BaseModel):
    processed: int
    failed: int
    processed_ids: list[str]
    errors: list[BulkActionError]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/ship", response_model=BulkActionResponse)
async def ship_orders(
    body: BulkActionRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    """Mark Pending records Shipped and deduct stock from the caller's inventory."""
    result = await LogisticsService(db, profile.id).ship_orders(body.ids)
    return result.as_dict()


@router.post("/revert", response_model=BulkActionResponse)
async def revert_orders(
    body: BulkActionRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    result = await LogisticsService(db, profile.id).revert_orders(body.ids)
    return result.as_dict()


@router.post("/delete", response_model=BulkActionResponse)
async def delete_orders(
    body: BulkActionRequest,
    db: AsyncSession = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    result = await LogisticsService(db, profile.id).delete_orders(body.ids)
    return result.as_dict()
