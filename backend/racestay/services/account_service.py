"""
Account activation: the single writer of users.is_active.

Admin tooling, the subscription handler and system flows all route through
here, so every change gets an audit row (reason, actor, timestamp) and the
same cascade to the user's properties and races.

The flag is shared: the write is a conditional UPDATE on the current value,
so two writers asking for the same state produce one change and one no-op.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.exceptions import UserNotFound
from racestay.core.logging import get_logger
from racestay.db.base import utcnow
from racestay.models.account_activation_log import AccountActivationLog
from racestay.models.property import Property
from racestay.models.race import Race
from racestay.models.user import User
from racestay.services.interfaces.notifier import NotificationEvent
from racestay.services.notifier_factory import notify

logger = get_logger(__name__)


async def apply_account_activation(
    db: AsyncSession,
    user_id: int,
    active: bool,
    reason: str,
    actor: str,
    cascade: bool = True,
) -> list[NotificationEvent] | None:
    """
    Change the flag inside the caller's transaction (no commit).

    Returns the events to dispatch once the caller has committed, or None
    when the account already had the requested state.
    """
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.is_active.is_not(active))
        .values(is_active=active, deactivated_at=None if active else utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        exists = await db.scalar(select(User.id).where(User.id == user_id))
        if exists is None:
            raise UserNotFound(f"User {user_id} not found")
        logger.debug("account_activation_noop", user_id=user_id, active=active, actor=actor)
        return None

    db.add(AccountActivationLog(user_id=user_id, is_active=active, reason=reason, actor=actor))

    if cascade:
        await db.execute(
            update(Property)
            .where(Property.owner_id == user_id)
            .values(is_active=active)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            update(Race)
            .where(Race.host_id == user_id)
            .values(is_active=active)
            .execution_options(synchronize_session=False)
        )

    await db.flush()
    logger.info(
        "account_activation_changed",
        user_id=user_id,
        active=active,
        reason=reason,
        actor=actor,
        cascade=cascade,
    )
    kind = "account_activated" if active else "account_deactivated"
    return [NotificationEvent(kind=kind, user_id=user_id, payload={"reason": reason})]


async def set_account_activation(
    db: AsyncSession,
    user_id: int,
    active: bool,
    reason: str,
    actor: str,
    cascade: bool = True,
) -> bool:
    """Change the flag as its own unit of work. Returns False when nothing changed."""
    try:
        events = await apply_account_activation(db, user_id, active, reason, actor, cascade)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if events is None:
        return False
    await notify(events)
    return True


async def get_activation_history(db: AsyncSession, user_id: int) -> list[AccountActivationLog]:
    result = await db.execute(
        select(AccountActivationLog)
        .where(AccountActivationLog.user_id == user_id)
        .order_by(AccountActivationLog.created_at.desc(), AccountActivationLog.id.desc())
    )
    return list(result.scalars().all())
