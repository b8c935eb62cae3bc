"""
Availability endpoints: calendar reads and host-managed blocked dates.
"""

from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.api.deps import get_current_user_id
from racestay.db.session import get_db
from racestay.schemas.availability import (
    BlockDatesRequest,
    CalendarResponse,
    DatesUpdatedResponse,
    UnblockDatesRequest,
)
from racestay.services import availability_service

router = APIRouter(prefix="/properties/{property_id}/availability", tags=["Availability"])


@router.get("/", response_model=CalendarResponse)
async def get_calendar(
    property_id: int,
    start: date,
    end: date,
    db: AsyncSession = Depends(get_db),
):
    """Calendar for [start, end). Served from Redis when cached."""
    days = await availability_service.get_calendar(db, property_id, start, end)
    return CalendarResponse(property_id=property_id, start=start, end=end, days=days)


@router.post("/block", response_model=DatesUpdatedResponse)
async def block_dates(
    property_id: int,
    body: BlockDatesRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    updated = await availability_service.block_dates(db, property_id, user_id, body.dates, body.notes)
    return DatesUpdatedResponse(property_id=property_id, updated=updated)


@router.post("/unblock", response_model=DatesUpdatedResponse)
async def unblock_dates(
    property_id: int,
    body: UnblockDatesRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    updated = await availability_service.unblock_dates(db, property_id, user_id, body.dates)
    return DatesUpdatedResponse(property_id=property_id, updated=updated)
