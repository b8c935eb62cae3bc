"""
Booking cost calculation.

cost = nights x points_per_night(province of the race)

Two paths:
  - calculate_cost(): pure, over the static rate table only
  - calculate_booking_cost(): preferred path, resolves the race's province
    and honours a `province_rates` override row; any gap in that data (or a
    failing lookup) falls back to the pure path instead of failing the
    booking

The result is captured on the booking at creation time; nothing here is
ever called to reprice an existing booking.
"""

import math
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.exceptions import InvalidDateRange
from racestay.core.logging import get_logger
from racestay.models.province_rate import ProvinceRate
from racestay.models.race import Race
from racestay.services import rate_table

logger = get_logger(__name__)


def calculate_nights(check_in: date | datetime, check_out: date | datetime) -> int:
    """Whole nights between two dates, partial days rounded up."""
    seconds = (_as_datetime(check_out) - _as_datetime(check_in)).total_seconds()
    nights = math.ceil(seconds / 86400)
    if nights <= 0:
        raise InvalidDateRange("Check-out date must be after check-in date")
    return nights


def calculate_cost(province: str | None, check_in: date, check_out: date) -> int:
    return calculate_nights(check_in, check_out) * rate_table.points_per_night(province)


async def get_rate_for_province(db: AsyncSession, province: str | None) -> int:
    """Override row if one exists, else the static table."""
    key = rate_table.normalize_province(province)
    if key is None:
        return rate_table.points_per_night(None)
    override = await db.scalar(
        select(ProvinceRate.points_per_night).where(ProvinceRate.province == key)
    )
    if override is not None:
        return override
    return rate_table.points_per_night(key)


async def calculate_booking_cost(
    db: AsyncSession,
    race_id: int,
    check_in: date,
    check_out: date,
) -> int:
    # Date errors are the caller's problem, never silently priced
    nights = calculate_nights(check_in, check_out)

    try:
        # A failed lookup only unwinds the savepoint; the caller's transaction stays usable
        async with db.begin_nested():
            province = await db.scalar(select(Race.province).where(Race.id == race_id))
            rate = await get_rate_for_province(db, province)
    except SQLAlchemyError as e:
        logger.warning("booking_cost_fallback", race_id=race_id, error=str(e))
        rate = rate_table.points_per_night(None)
        province = None

    cost = nights * rate
    logger.debug(
        "booking_cost_calculated",
        race_id=race_id,
        province=province,
        nights=nights,
        rate=rate,
        cost=cost,
    )
    return cost


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime(value.year, value.month, value.day)
