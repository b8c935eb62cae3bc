"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    race_id: int
    check_in: date
    check_out: date
    guests_count: int = Field(default=1, gt=0, le=20)
    request_message: Optional[str] = Field(None, max_length=2000)


class BookingReject(BaseModel):
    message: Optional[str] = Field(None, max_length=2000)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class BookingResponse(BaseModel):
    id: int
    race_id: int
    property_id: int
    host_id: int
    guest_id: int
    check_in: date
    check_out: date
    guests_count: int
    request_message: Optional[str]
    points_cost: int
    status: str
    host_response_deadline: datetime
    host_response_message: Optional[str]
    accepted_at: Optional[datetime]
    rejected_at: Optional[datetime]
    expired_at: Optional[datetime]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancelled_by: Optional[str]
    cancellation_reason: Optional[str]
    refund_amount: Optional[int]
    penalty_amount: Optional[int]
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int


class BookingStatsResponse(BaseModel):
    user_id: int
    as_guest: dict[str, int]
    as_host: dict[str, int]
    points_spent: int
    points_earned: int


class CostQuoteResponse(BaseModel):
    race_id: int
    nights: int
    points_per_night: int
    points_cost: int
