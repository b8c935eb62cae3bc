"""
Pydantic schemas for property availability calendars.
"""

import datetime
from typing import Optional
from pydantic import BaseModel, Field


class CalendarDay(BaseModel):
    date: datetime.date
    status: str
    booking_id: Optional[int] = None
    notes: Optional[str] = None


class CalendarResponse(BaseModel):
    property_id: int
    start: datetime.date
    end: datetime.date
    days: list[CalendarDay]


class BlockDatesRequest(BaseModel):
    dates: list[datetime.date] = Field(..., min_length=1, max_length=366)
    notes: Optional[str] = Field(None, max_length=500)


class UnblockDatesRequest(BaseModel):
    dates: list[datetime.date] = Field(..., min_length=1, max_length=366)


class DatesUpdatedResponse(BaseModel):
    property_id: int
    updated: int
