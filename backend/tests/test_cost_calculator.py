"""
Tests for the province rate table and booking cost calculation.
"""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.exceptions import InvalidDateRange
from racestay.models.booking import Booking
from racestay.models.province_rate import ProvinceRate
from racestay.schemas.booking import BookingCreate
from racestay.services import booking_service, cost_calculator, rate_table


def test_normalize_province_strips_accents_and_aliases():
    assert rate_table.normalize_province("  Málaga ") == "malaga"
    assert rate_table.normalize_province("A Coruña") == "a coruna"
    assert rate_table.normalize_province("Vizcaya") == "bizkaia"
    assert rate_table.normalize_province("Illes  Balears") == "baleares"
    assert rate_table.normalize_province("") is None
    assert rate_table.normalize_province(None) is None


def test_unknown_province_falls_back_to_default_rate():
    assert rate_table.points_per_night("Madrid") == 45
    assert rate_table.points_per_night("Unknownland") == 30
    assert rate_table.points_per_night(None) == 30
    assert not rate_table.is_known_province("Unknownland")
    assert rate_table.is_known_province("Gerona")


def test_all_rates_sorted_most_expensive_first():
    rates = rate_table.all_rates()
    values = [r["points_per_night"] for r in rates]
    assert values == sorted(values, reverse=True)
    assert rates[0]["tier"] == "premium"
    assert {r["tier"] for r in rates} == {"low", "medium", "high", "premium"}


def test_calculate_nights():
    assert cost_calculator.calculate_nights(date(2026, 3, 1), date(2026, 3, 3)) == 2
    # Partial days round up
    assert cost_calculator.calculate_nights(datetime(2026, 3, 1, 18), datetime(2026, 3, 3, 10)) == 2
    assert cost_calculator.calculate_nights(datetime(2026, 3, 1, 10), datetime(2026, 3, 3, 18)) == 3


@pytest.mark.parametrize("check_out", [date(2026, 3, 1), date(2026, 2, 27)])
def test_non_positive_nights_rejected(check_out):
    with pytest.raises(InvalidDateRange):
        cost_calculator.calculate_nights(date(2026, 3, 1), check_out)


def test_calculate_cost_is_pure():
    first = cost_calculator.calculate_cost("Zaragoza", date(2026, 3, 1), date(2026, 3, 3))
    second = cost_calculator.calculate_cost("Zaragoza", date(2026, 3, 1), date(2026, 3, 3))
    assert first == second == 60
    assert cost_calculator.calculate_cost("Madrid", date(2026, 3, 1), date(2026, 3, 4)) == 135


@pytest.mark.asyncio
async def test_booking_cost_uses_race_province(db_session: AsyncSession, make_user, make_race):
    host = await make_user()
    race = await make_race(host, province="Sevilla")
    cost = await cost_calculator.calculate_booking_cost(db_session, race.id, date(2026, 3, 1), date(2026, 3, 3))
    assert cost == 70


@pytest.mark.asyncio
async def test_booking_cost_prefers_database_override(db_session: AsyncSession, make_user, make_race):
    host = await make_user()
    race = await make_race(host, province="Sevilla")
    db_session.add(ProvinceRate(province="sevilla", points_per_night=50))
    await db_session.commit()

    cost = await cost_calculator.calculate_booking_cost(db_session, race.id, date(2026, 3, 1), date(2026, 3, 3))
    assert cost == 100


@pytest.mark.asyncio
async def test_booking_cost_for_unknown_race_uses_fallback(db_session: AsyncSession):
    cost = await cost_calculator.calculate_booking_cost(db_session, 99999, date(2026, 3, 1), date(2026, 3, 2))
    assert cost == 30


@pytest.mark.asyncio
async def test_booking_cost_rejects_bad_range_before_lookup(db_session: AsyncSession):
    with pytest.raises(InvalidDateRange):
        await cost_calculator.calculate_booking_cost(db_session, 1, date(2026, 3, 2), date(2026, 3, 2))


@pytest.mark.asyncio
async def test_failed_rate_lookup_keeps_booking_request_alive(
    db_session: AsyncSession, make_user, make_race, today, monkeypatch
):
    host = await make_user()
    guest = await make_user(points=200)
    race = await make_race(host, province="Madrid")

    async def broken_lookup(db, province):
        await db.execute(text("SELECT points_per_night FROM province_rates_missing"))

    monkeypatch.setattr(cost_calculator, "get_rate_for_province", broken_lookup)

    check_in = today + timedelta(days=30)
    booking = await booking_service.create_booking_request(
        db_session,
        guest.id,
        BookingCreate(race_id=race.id, check_in=check_in, check_out=check_in + timedelta(days=2)),
    )

    assert booking.points_cost == 2 * rate_table.points_per_night(None)
    stored = await db_session.scalar(select(Booking.points_cost).where(Booking.id == booking.id))
    assert stored == booking.points_cost
