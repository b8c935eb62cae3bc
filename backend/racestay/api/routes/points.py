"""
Points endpoints: balance, lifetime summary, history and province rates.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.api.deps import get_current_user_id
from racestay.db.session import get_db
from racestay.schemas.points import (
    BalanceResponse,
    PointsHistoryResponse,
    PointsSummaryResponse,
    ProvinceRateResponse,
)
from racestay.services import points_ledger, rate_table

router = APIRouter(prefix="/points", tags=["Points"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    balance = await points_ledger.get_balance(db, user_id)
    return BalanceResponse(user_id=user_id, points_balance=balance)


@router.get("/summary", response_model=PointsSummaryResponse)
async def get_summary(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await points_ledger.get_points_summary(db, user_id)


@router.get("/history", response_model=PointsHistoryResponse)
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    transactions = await points_ledger.get_history(db, user_id, limit=limit, offset=offset)
    return PointsHistoryResponse(transactions=transactions, limit=limit, offset=offset)


@router.get("/rates", response_model=list[ProvinceRateResponse])
async def list_rates():
    """Static points-per-night table by province."""
    return rate_table.all_rates()
