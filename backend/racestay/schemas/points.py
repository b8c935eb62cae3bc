"""
Pydantic schemas for points balance, history and rates.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class BalanceResponse(BaseModel):
    user_id: int
    points_balance: int


class PointsSummaryResponse(BaseModel):
    user_id: int
    current_balance: int
    total_earned: int
    total_spent: int
    total_penalties: int


class PointsTransactionResponse(BaseModel):
    id: int
    amount: int
    type: str
    description: str
    booking_id: Optional[int]
    balance_after: int
    created_at: datetime

    model_config = {"from_attributes": True}


class PointsHistoryResponse(BaseModel):
    transactions: list[PointsTransactionResponse]
    limit: int
    offset: int


class ProvinceRateResponse(BaseModel):
    province: str
    points_per_night: int
    tier: str
