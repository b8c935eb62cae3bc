"""
Booking endpoints: request, host response, cancellation and reads.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.api.deps import get_current_user_id
from racestay.db.session import get_db
from racestay.schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingReject,
    BookingResponse,
    BookingStatsResponse,
    CostQuoteResponse,
)
from racestay.services import booking_service, cost_calculator

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Request a stay with the race's host.

    The booking is priced now and the price never changes. Points are only
    checked here; they move when the host accepts.
    """
    return await booking_service.create_booking_request(db, user_id, booking_data)


@router.get("/quote", response_model=CostQuoteResponse)
async def quote_booking(
    race_id: int,
    check_in: date,
    check_out: date,
    db: AsyncSession = Depends(get_db),
):
    """Price a stay without creating anything."""
    nights = cost_calculator.calculate_nights(check_in, check_out)
    cost = await cost_calculator.calculate_booking_cost(db, race_id, check_in, check_out)
    return CostQuoteResponse(
        race_id=race_id,
        nights=nights,
        points_per_night=cost // nights,
        points_cost=cost,
    )


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    role: Optional[str] = Query(None, pattern="^(guest|host)$"),
    booking_status: Optional[str] = Query(None, alias="status"),
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    bookings, total = await booking_service.list_user_bookings(
        db, user_id, role=role, status=booking_status, start=start, end=end, limit=limit, offset=offset
    )
    return BookingListResponse(bookings=bookings, total=total)


@router.get("/stats", response_model=BookingStatsResponse)
async def booking_stats(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_booking_stats(db, user_id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_booking(db, booking_id, user_id)


@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Host accepts: the guest pays, dates are reserved.

    Returns 409 if the booking is no longer pending (someone else already
    answered or it expired) or the guest can no longer cover the cost.
    """
    return await booking_service.accept_booking(db, booking_id, user_id)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: int,
    body: Optional[BookingReject] = None,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    message = body.message if body else None
    return await booking_service.reject_booking(db, booking_id, user_id, message)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    body: Optional[BookingCancel] = None,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Cancel as guest or host.

    A host cancelling an accepted stay pays a penalty equal to its cost and
    the guest is refunded in full.
    """
    reason = body.reason if body else None
    return await booking_service.cancel_booking(db, booking_id, user_id, reason)
