"""
Tests for the points ledger: atomic mutations, balance conservation and
integrity checks.
"""

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.exceptions import InsufficientPoints, LedgerIntegrityViolation, UserNotFound
from racestay.models.points_transaction import PointsTransaction, TransactionType
from racestay.models.user import User
from racestay.services import points_ledger


async def assert_conserved(db: AsyncSession, *user_ids: int):
    for user_id in user_ids:
        assert await points_ledger.get_balance(db, user_id) == await points_ledger.transaction_sum(db, user_id)


@pytest.mark.asyncio
async def test_credit_and_debit_record_balance_after(db_session: AsyncSession, make_user):
    user = await make_user(points=100)

    tx = await points_ledger.debit(db_session, user.id, 30, TransactionType.BOOKING_PAYMENT, "stay")
    await db_session.commit()

    assert tx.amount == -30
    assert tx.balance_after == 70
    assert await points_ledger.get_balance(db_session, user.id) == 70
    await assert_conserved(db_session, user.id)


@pytest.mark.asyncio
async def test_debit_refuses_to_overdraw(db_session: AsyncSession, make_user):
    user = await make_user(points=50)

    with pytest.raises(InsufficientPoints) as exc:
        await points_ledger.debit(db_session, user.id, 60, TransactionType.BOOKING_PAYMENT, "stay")
    await db_session.rollback()

    assert exc.value.balance == 50
    assert exc.value.required == 60
    assert await points_ledger.get_balance(db_session, user.id) == 50
    history = await points_ledger.get_history(db_session, user.id)
    assert len(history) == 1  # only the starting balance


@pytest.mark.asyncio
async def test_penalty_debit_may_go_negative(db_session: AsyncSession, make_user):
    user = await make_user(points=20)

    await points_ledger.debit(
        db_session, user.id, 100, TransactionType.BOOKING_REFUND, "penalty", allow_negative=True
    )
    await db_session.commit()

    assert await points_ledger.get_balance(db_session, user.id) == -80
    await assert_conserved(db_session, user.id)


@pytest.mark.asyncio
async def test_non_positive_amounts_rejected(db_session: AsyncSession, make_user):
    user = await make_user(points=10)
    with pytest.raises(ValueError):
        await points_ledger.credit(db_session, user.id, 0, TransactionType.BOOKING_EARNING, "nothing")
    with pytest.raises(ValueError):
        await points_ledger.debit(db_session, user.id, -5, TransactionType.BOOKING_PAYMENT, "nothing")


@pytest.mark.asyncio
async def test_credit_unknown_user(db_session: AsyncSession):
    with pytest.raises(UserNotFound):
        await points_ledger.credit(db_session, 424242, 10, TransactionType.BOOKING_EARNING, "ghost")


@pytest.mark.asyncio
async def test_transfer_moves_points_pairwise(db_session: AsyncSession, make_user):
    guest = await make_user(points=100)
    host = await make_user(points=0)

    debit_tx, credit_tx = await points_ledger.transfer(
        db_session,
        guest.id,
        host.id,
        60,
        TransactionType.BOOKING_PAYMENT,
        TransactionType.BOOKING_EARNING,
        "Booking #1",
    )
    await db_session.commit()

    assert (debit_tx.amount, credit_tx.amount) == (-60, 60)
    assert await points_ledger.get_balance(db_session, guest.id) == 40
    assert await points_ledger.get_balance(db_session, host.id) == 60
    await assert_conserved(db_session, guest.id, host.id)


@pytest.mark.asyncio
async def test_transfer_rolls_back_debit_when_credit_fails(db_session: AsyncSession, make_user):
    guest = await make_user(points=100)

    with pytest.raises(UserNotFound):
        await points_ledger.transfer(
            db_session,
            guest.id,
            987654,
            60,
            TransactionType.BOOKING_PAYMENT,
            TransactionType.BOOKING_EARNING,
            "Booking to nobody",
        )
    await db_session.rollback()

    assert await points_ledger.get_balance(db_session, guest.id) == 100
    await assert_conserved(db_session, guest.id)


@pytest.mark.asyncio
async def test_adjust_to_zero_writes_one_forfeit_row(db_session: AsyncSession, make_user):
    user = await make_user(points=75)

    tx = await points_ledger.adjust_to_zero(db_session, user.id, "forfeit")
    await db_session.commit()

    assert tx.amount == -75
    assert tx.type == TransactionType.SUBSCRIPTION_BONUS.value
    assert await points_ledger.get_balance(db_session, user.id) == 0
    assert await points_ledger.adjust_to_zero(db_session, user.id, "again") is None
    await assert_conserved(db_session, user.id)


@pytest.mark.asyncio
async def test_negative_balance_is_zeroed_upwards(db_session: AsyncSession, make_user):
    user = await make_user(points=10)
    await points_ledger.debit(db_session, user.id, 40, TransactionType.BOOKING_REFUND, "penalty", allow_negative=True)

    tx = await points_ledger.adjust_to_zero(db_session, user.id, "forfeit")
    await db_session.commit()

    assert tx.amount == 30
    assert await points_ledger.get_balance(db_session, user.id) == 0


@pytest.mark.asyncio
async def test_verify_freezes_drifted_account(db_session: AsyncSession, make_user):
    user = await make_user(points=100)
    # Simulate an out-of-band write that bypassed the ledger
    await db_session.execute(update(User).where(User.id == user.id).values(points_balance=250))
    await db_session.commit()

    assert await points_ledger.find_drifted_users(db_session) == [user.id]
    with pytest.raises(LedgerIntegrityViolation):
        await points_ledger.verify_user_ledger(db_session, user.id)

    frozen = await db_session.scalar(select(User.ledger_frozen).where(User.id == user.id))
    assert frozen is True
    with pytest.raises(LedgerIntegrityViolation):
        await points_ledger.credit(db_session, user.id, 5, TransactionType.BOOKING_EARNING, "blocked")
    # Frozen accounts are not reported twice
    assert await points_ledger.find_drifted_users(db_session) == []


@pytest.mark.asyncio
async def test_verify_passes_for_consistent_account(db_session: AsyncSession, make_user):
    user = await make_user(points=100)
    assert await points_ledger.verify_user_ledger(db_session, user.id) == 100


@pytest.mark.asyncio
async def test_history_newest_first_with_paging(db_session: AsyncSession, make_user):
    user = await make_user(points=100)
    for amount in (1, 2, 3):
        await points_ledger.credit(db_session, user.id, amount, TransactionType.BOOKING_EARNING, f"+{amount}")
    await db_session.commit()

    history = await points_ledger.get_history(db_session, user.id, limit=2)
    assert [tx.amount for tx in history] == [3, 2]
    rest = await points_ledger.get_history(db_session, user.id, limit=10, offset=2)
    assert [tx.amount for tx in rest] == [1, 100]


@pytest.mark.asyncio
async def test_points_summary_separates_penalties(db_session: AsyncSession, make_user):
    user = await make_user(points=100)
    await points_ledger.debit(db_session, user.id, 30, TransactionType.BOOKING_PAYMENT, "stay")
    await points_ledger.debit(db_session, user.id, 20, TransactionType.BOOKING_REFUND, "penalty", allow_negative=True)
    await points_ledger.credit(db_session, user.id, 10, TransactionType.BOOKING_REFUND, "refund")
    await db_session.commit()

    summary = await points_ledger.get_points_summary(db_session, user.id)
    assert summary == {
        "user_id": user.id,
        "current_balance": 60,
        "total_earned": 110,
        "total_spent": 30,
        "total_penalties": 20,
    }
    rows = (await db_session.execute(select(PointsTransaction).where(PointsTransaction.user_id == user.id))).scalars().all()
    assert len(rows) == 4
