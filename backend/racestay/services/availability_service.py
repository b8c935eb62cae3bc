"""
Availability manager: per-date calendar of a property.

Reservation rules:
  - reserve() flips an `available` row to `reserved` with a conditional
    UPDATE, or inserts a new `reserved` row. Two bookings racing for the same
    night are decided by that UPDATE or by the (property_id, date) unique
    constraint; the loser gets AvailabilityConflict, never a silent overwrite
  - Re-reserving a night already held by the same booking is a no-op
  - release() only touches rows reserved by the given booking; host-set
    `blocked` nights are never released by booking logic

reserve()/release() run inside the caller's booking transition and do not
commit. block_dates()/unblock_dates() are standalone host actions and commit
their own unit of work. Calendar cache invalidation happens after commit.
"""

from datetime import date, timedelta

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.exceptions import AvailabilityConflict, InvalidDateRange, MissingProperty, NotPropertyOwner
from racestay.core.logging import get_logger
from racestay.core.metrics import availability_conflicts
from racestay.models.availability import AvailabilityEntry, AVAILABLE, RESERVED, BLOCKED
from racestay.models.property import Property
from racestay.services import cache_service

logger = get_logger(__name__)


def stay_dates(check_in: date, check_out: date) -> list[date]:
    """Nights of a stay: every date in [check_in, check_out)."""
    if check_out <= check_in:
        raise InvalidDateRange("Check-out date must be after check-in date")
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


async def reserve(db: AsyncSession, property_id: int, dates: list[date], booking_id: int) -> None:
    for day in dates:
        result = await db.execute(
            update(AvailabilityEntry)
            .where(
                AvailabilityEntry.property_id == property_id,
                AvailabilityEntry.date == day,
                AvailabilityEntry.status == AVAILABLE,
            )
            .values(status=RESERVED, booking_id=booking_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            continue

        existing = (
            await db.execute(
                select(AvailabilityEntry.status, AvailabilityEntry.booking_id).where(
                    AvailabilityEntry.property_id == property_id,
                    AvailabilityEntry.date == day,
                )
            )
        ).one_or_none()

        if existing is None:
            db.add(
                AvailabilityEntry(
                    property_id=property_id,
                    date=day,
                    status=RESERVED,
                    booking_id=booking_id,
                )
            )
            try:
                await db.flush()
            except IntegrityError:
                # Someone inserted the same night between our SELECT and INSERT
                _conflict(property_id, day, booking_id, "concurrent_insert")
            continue

        if existing.status == RESERVED and existing.booking_id == booking_id:
            continue

        _conflict(property_id, day, booking_id, existing.status)

    logger.info("availability_reserved", property_id=property_id, booking_id=booking_id, nights=len(dates))


def _conflict(property_id: int, day: date, booking_id: int, reason: str) -> None:
    availability_conflicts.inc()
    logger.warning(
        "availability_conflict",
        property_id=property_id,
        date=day.isoformat(),
        booking_id=booking_id,
        reason=reason,
    )
    raise AvailabilityConflict(f"{day.isoformat()} is not available for property {property_id}")


async def release(db: AsyncSession, property_id: int, dates: list[date], booking_id: int) -> int:
    """Return this booking's reserved nights to `available`. Returns nights released."""
    if not dates:
        return 0
    result = await db.execute(
        update(AvailabilityEntry)
        .where(
            AvailabilityEntry.property_id == property_id,
            AvailabilityEntry.date.in_(dates),
            AvailabilityEntry.status == RESERVED,
            AvailabilityEntry.booking_id == booking_id,
        )
        .values(status=AVAILABLE, booking_id=None)
        .execution_options(synchronize_session=False)
    )
    logger.info(
        "availability_released",
        property_id=property_id,
        booking_id=booking_id,
        nights=result.rowcount,
    )
    return result.rowcount


async def is_available(db: AsyncSession, property_id: int, check_in: date, check_out: date) -> bool:
    taken = await db.scalar(
        select(func.count(AvailabilityEntry.id)).where(
            AvailabilityEntry.property_id == property_id,
            AvailabilityEntry.date >= check_in,
            AvailabilityEntry.date < check_out,
            AvailabilityEntry.status != AVAILABLE,
        )
    )
    return taken == 0


async def _get_owned_property(db: AsyncSession, property_id: int, owner_id: int) -> Property:
    prop = await db.get(Property, property_id)
    if prop is None:
        raise MissingProperty(f"Property {property_id} not found")
    if prop.owner_id != owner_id:
        raise NotPropertyOwner(f"User {owner_id} does not own property {property_id}")
    return prop


async def block_dates(
    db: AsyncSession,
    property_id: int,
    owner_id: int,
    dates: list[date],
    notes: str | None = None,
) -> int:
    """Host marks nights as unavailable. Nights held by a booking cannot be blocked."""
    await _get_owned_property(db, property_id, owner_id)

    try:
        for day in dates:
            entry = await db.scalar(
                select(AvailabilityEntry).where(
                    AvailabilityEntry.property_id == property_id,
                    AvailabilityEntry.date == day,
                )
                .execution_options(populate_existing=True)
            )
            if entry is None:
                db.add(AvailabilityEntry(property_id=property_id, date=day, status=BLOCKED, notes=notes))
            elif entry.status == RESERVED:
                _conflict(property_id, day, entry.booking_id, "reserved")
            else:
                entry.status = BLOCKED
                entry.notes = notes
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await cache_service.invalidate_calendar(property_id)
    logger.info("availability_blocked", property_id=property_id, nights=len(dates))
    return len(dates)


async def unblock_dates(db: AsyncSession, property_id: int, owner_id: int, dates: list[date]) -> int:
    """Host reopens blocked nights. Reserved nights are left alone."""
    await _get_owned_property(db, property_id, owner_id)

    try:
        result = await db.execute(
            update(AvailabilityEntry)
            .where(
                AvailabilityEntry.property_id == property_id,
                AvailabilityEntry.date.in_(dates),
                AvailabilityEntry.status == BLOCKED,
            )
            .values(status=AVAILABLE, notes=None)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await cache_service.invalidate_calendar(property_id)
    logger.info("availability_unblocked", property_id=property_id, nights=result.rowcount)
    return result.rowcount


async def get_calendar(db: AsyncSession, property_id: int, start: date, end: date) -> list[dict]:
    """
    Status of every date in [start, end).
    Dates without a row are `available`.
    """
    if end <= start:
        raise InvalidDateRange("Calendar end must be after start")

    cached = await cache_service.get_cached_calendar(property_id, start.isoformat(), end.isoformat())
    if cached is not None:
        return cached

    result = await db.execute(
        select(AvailabilityEntry).where(
            AvailabilityEntry.property_id == property_id,
            AvailabilityEntry.date >= start,
            AvailabilityEntry.date < end,
        )
        .execution_options(populate_existing=True)
    )
    by_date = {entry.date: entry for entry in result.scalars().all()}

    calendar = []
    day = start
    while day < end:
        entry = by_date.get(day)
        calendar.append(
            {
                "date": day.isoformat(),
                "status": entry.status if entry else AVAILABLE,
                "booking_id": entry.booking_id if entry else None,
                "notes": entry.notes if entry else None,
            }
        )
        day += timedelta(days=1)

    await cache_service.set_cached_calendar(property_id, start.isoformat(), end.isoformat(), calendar)
    return calendar
