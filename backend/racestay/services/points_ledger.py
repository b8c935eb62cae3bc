"""
Points ledger: the only writer of users.points_balance.

ATOMICITY STRATEGY: Conditional UPDATE + append in one transaction
===================================================================

Problem:
  A booking accept and a scheduler sweep (or two accepts for different
  bookings of the same guest) both read balance=100, both subtract 60,
  both write 40. Result: 60 points created out of thin air.

Solution:
  The balance is never read and written as two steps. Every mutation is a
  single statement that re-checks the guard and writes the new value:

    UPDATE users SET points_balance = points_balance + :delta
    WHERE id = :user_id AND NOT ledger_frozen
      [AND points_balance >= :amount]          -- debits without allowance
    RETURNING points_balance

  followed by the points_transactions insert in the same database
  transaction. Either both are committed by the caller or neither is, so no
  reader can observe a balance without its transaction row.

  If the UPDATE matches nothing we re-read the row only to tell the caller
  *why* (missing user, frozen ledger, insufficient balance); the failed
  statement wrote nothing.

  transfer() runs debit then credit on the same session; a failing credit
  leaves the debit uncommitted and the caller's rollback discards both.

The ledger never commits on its own: it always participates in the caller's
unit of work. The one exception is verify_user_ledger(), which commits the
freeze flag so it survives the caller's rollback.
"""

from sqlalchemy import select, update, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.exceptions import (
    InsufficientPoints,
    LedgerIntegrityViolation,
    UserNotFound,
)
from racestay.core.logging import get_logger
from racestay.core.metrics import (
    ledger_integrity_violations,
    record_ledger_operation,
    record_points_moved,
)
from racestay.models.points_transaction import PointsTransaction, TransactionType
from racestay.models.user import User

logger = get_logger(__name__)

MAX_RETRY_ATTEMPTS = 3


async def _apply(
    db: AsyncSession,
    user_id: int,
    delta: int,
    tx_type: TransactionType,
    description: str,
    booking_id: int | None,
    require_cover: bool,
) -> PointsTransaction:
    operation = "credit" if delta > 0 else "debit"

    stmt = update(User).where(User.id == user_id, User.ledger_frozen.is_(False))
    if require_cover:
        stmt = stmt.where(User.points_balance >= -delta)
    stmt = (
        stmt.values(points_balance=User.points_balance + delta)
        .returning(User.points_balance)
        .execution_options(synchronize_session=False)
    )
    balance_after = (await db.execute(stmt)).scalar_one_or_none()

    if balance_after is None:
        row = (
            await db.execute(
                select(User.points_balance, User.ledger_frozen).where(User.id == user_id)
            )
        ).one_or_none()
        if row is None:
            record_ledger_operation(operation, "missing_user")
            raise UserNotFound(f"User {user_id} not found")
        if row.ledger_frozen:
            record_ledger_operation(operation, "frozen")
            logger.error("ledger_write_refused_frozen", user_id=user_id, operation=operation)
            raise LedgerIntegrityViolation(
                f"Ledger for user {user_id} is frozen pending manual review"
            )
        record_ledger_operation(operation, "insufficient")
        logger.warning(
            "ledger_insufficient_points",
            user_id=user_id,
            balance=row.points_balance,
            required=-delta,
        )
        raise InsufficientPoints(balance=row.points_balance, required=-delta, user_id=user_id)

    tx = PointsTransaction(
        user_id=user_id,
        amount=delta,
        type=tx_type.value,
        description=description,
        booking_id=booking_id,
        balance_after=balance_after,
    )
    db.add(tx)
    await db.flush()

    record_ledger_operation(operation, "success")
    record_points_moved(tx_type.value, delta)
    logger.info(
        f"ledger_{operation}",
        user_id=user_id,
        amount=delta,
        type=tx_type.value,
        booking_id=booking_id,
        balance_after=balance_after,
    )
    return tx


async def credit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    tx_type: TransactionType,
    description: str,
    booking_id: int | None = None,
) -> PointsTransaction:
    if amount <= 0:
        raise ValueError("credit amount must be positive")
    return await _apply(db, user_id, amount, tx_type, description, booking_id, require_cover=False)


async def debit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    tx_type: TransactionType,
    description: str,
    booking_id: int | None = None,
    allow_negative: bool = False,
) -> PointsTransaction:
    """
    Take points from a user.

    allow_negative is reserved for penalties and clawbacks, which may legally
    leave the balance below zero.
    """
    if amount <= 0:
        raise ValueError("debit amount must be positive")
    return await _apply(
        db, user_id, -amount, tx_type, description, booking_id, require_cover=not allow_negative
    )


async def transfer(
    db: AsyncSession,
    from_user_id: int,
    to_user_id: int,
    amount: int,
    debit_type: TransactionType,
    credit_type: TransactionType,
    description: str,
    booking_id: int | None = None,
    allow_negative: bool = False,
) -> tuple[PointsTransaction, PointsTransaction]:
    debit_tx = await debit(
        db, from_user_id, amount, debit_type, description, booking_id, allow_negative=allow_negative
    )
    credit_tx = await credit(db, to_user_id, amount, credit_type, description, booking_id)
    return debit_tx, credit_tx


async def adjust_to_zero(
    db: AsyncSession,
    user_id: int,
    description: str,
) -> PointsTransaction | None:
    """
    Bring a balance to exactly zero with a single ledger row.

    The UPDATE is conditioned on the balance we read, so a concurrent
    mutation between the read and the write causes a retry rather than a
    lost update. Returns None when the balance already is zero.
    """
    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        row = (
            await db.execute(
                select(User.points_balance, User.ledger_frozen).where(User.id == user_id)
            )
        ).one_or_none()
        if row is None:
            raise UserNotFound(f"User {user_id} not found")
        if row.ledger_frozen:
            raise LedgerIntegrityViolation(
                f"Ledger for user {user_id} is frozen pending manual review"
            )
        if row.points_balance == 0:
            return None

        result = await db.execute(
            update(User)
            .where(
                User.id == user_id,
                User.points_balance == row.points_balance,
                User.ledger_frozen.is_(False),
            )
            .values(points_balance=0)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.info("ledger_adjust_retry", user_id=user_id, attempt=attempt)
            continue

        tx = PointsTransaction(
            user_id=user_id,
            amount=-row.points_balance,
            type=TransactionType.SUBSCRIPTION_BONUS.value,
            description=description,
            balance_after=0,
        )
        db.add(tx)
        await db.flush()
        record_ledger_operation("adjust", "success")
        record_points_moved(TransactionType.SUBSCRIPTION_BONUS.value, row.points_balance)
        logger.info("ledger_adjusted_to_zero", user_id=user_id, forfeited=row.points_balance)
        return tx

    record_ledger_operation("adjust", "conflict")
    raise LedgerIntegrityViolation(
        f"Balance of user {user_id} kept changing while being zeroed; retry later"
    )


async def get_balance(db: AsyncSession, user_id: int) -> int:
    balance = await db.scalar(select(User.points_balance).where(User.id == user_id))
    if balance is None:
        raise UserNotFound(f"User {user_id} not found")
    return balance


async def has_sufficient_points(db: AsyncSession, user_id: int, required: int) -> bool:
    return await get_balance(db, user_id) >= required


async def get_history(
    db: AsyncSession,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
) -> list[PointsTransaction]:
    """Most recent transactions first."""
    result = await db.execute(
        select(PointsTransaction)
        .where(PointsTransaction.user_id == user_id)
        .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_points_summary(db: AsyncSession, user_id: int) -> dict:
    """
    Balance plus lifetime totals.

    Negative booking_refund rows are cancellation penalties and clawbacks;
    every other negative row counts as spent.
    """
    balance = await get_balance(db, user_id)
    penalty = (PointsTransaction.type == TransactionType.BOOKING_REFUND.value) & (
        PointsTransaction.amount < 0
    )
    row = (
        await db.execute(
            select(
                func.coalesce(
                    func.sum(case((PointsTransaction.amount > 0, PointsTransaction.amount), else_=0)), 0
                ).label("earned"),
                func.coalesce(
                    func.sum(
                        case(
                            (penalty, 0),
                            (PointsTransaction.amount < 0, -PointsTransaction.amount),
                            else_=0,
                        )
                    ),
                    0,
                ).label("spent"),
                func.coalesce(
                    func.sum(case((penalty, -PointsTransaction.amount), else_=0)), 0
                ).label("penalties"),
            ).where(PointsTransaction.user_id == user_id)
        )
    ).one()
    return {
        "user_id": user_id,
        "current_balance": balance,
        "total_earned": int(row.earned),
        "total_spent": int(row.spent),
        "total_penalties": int(row.penalties),
    }


async def transaction_sum(db: AsyncSession, user_id: int) -> int:
    total = await db.scalar(
        select(func.coalesce(func.sum(PointsTransaction.amount), 0)).where(
            PointsTransaction.user_id == user_id
        )
    )
    return int(total)


async def verify_user_ledger(db: AsyncSession, user_id: int) -> int:
    """
    Check balance == sum(transactions) for one user.

    On mismatch the account is frozen (committed immediately) and
    LedgerIntegrityViolation is raised; every later mutation is refused
    until an operator clears the flag. Returns the verified balance.
    """
    balance = await get_balance(db, user_id)
    total = await transaction_sum(db, user_id)
    if balance == total:
        return balance

    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(ledger_frozen=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    ledger_integrity_violations.inc()
    logger.critical(
        "ledger_integrity_violation",
        user_id=user_id,
        balance=balance,
        transaction_sum=total,
        drift=balance - total,
    )
    raise LedgerIntegrityViolation(
        f"Balance {balance} of user {user_id} does not match transaction sum {total}"
    )


async def find_drifted_users(db: AsyncSession) -> list[int]:
    """Ids of unfrozen users whose balance disagrees with their transaction sum."""
    sums = (
        select(
            PointsTransaction.user_id.label("user_id"),
            func.sum(PointsTransaction.amount).label("total"),
        )
        .group_by(PointsTransaction.user_id)
        .subquery()
    )
    result = await db.execute(
        select(User.id)
        .outerjoin(sums, sums.c.user_id == User.id)
        .where(
            User.ledger_frozen.is_(False),
            User.points_balance != func.coalesce(sums.c.total, 0),
        )
        .order_by(User.id)
    )
    return list(result.scalars().all())
