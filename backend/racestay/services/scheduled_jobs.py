"""
Job handlers run by the background scheduler.

Each handler takes a fresh session and the tick's `now`, does one sweep and
returns how many items it touched.
"""

from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.config import Settings, get_settings
from racestay.core.exceptions import LedgerIntegrityViolation
from racestay.core.logging import get_logger
from racestay.models.notification import Notification
from racestay.services import booking_service, points_ledger, subscription_service
from racestay.services.scheduler import ScheduledJob

logger = get_logger(__name__)


async def check_expired_bookings(db: AsyncSession, now: datetime) -> int:
    return await booking_service.expire_pending_bookings(db, now)


async def send_deadline_reminders(db: AsyncSession, now: datetime) -> int:
    return await booking_service.send_deadline_reminders(db, now)


async def auto_confirm_bookings(db: AsyncSession, now: datetime) -> int:
    return await booking_service.auto_confirm_bookings(db, now.date())


async def auto_complete_bookings(db: AsyncSession, now: datetime) -> int:
    return await booking_service.auto_complete_bookings(db, now.date())


async def send_review_prompts(db: AsyncSession, now: datetime) -> int:
    return await booking_service.send_review_prompts(db, now)


async def expire_ended_subscriptions(db: AsyncSession, now: datetime) -> int:
    return await subscription_service.expire_ended_subscriptions(db, now)


async def audit_ledger(db: AsyncSession, now: datetime) -> int:
    """Freeze every account whose balance drifted from its transaction log."""
    frozen = 0
    for user_id in await points_ledger.find_drifted_users(db):
        try:
            await points_ledger.verify_user_ledger(db, user_id)
        except LedgerIntegrityViolation:
            frozen += 1
    if frozen:
        logger.critical("ledger_audit_froze_accounts", count=frozen)
    return frozen


async def cleanup_old_notifications(db: AsyncSession, now: datetime) -> int:
    settings = get_settings()
    cutoff = now - timedelta(days=settings.NOTIFICATION_RETENTION_DAYS)
    result = await db.execute(delete(Notification).where(Notification.created_at < cutoff))
    await db.commit()
    if result.rowcount:
        logger.info("notifications_cleaned_up", deleted=result.rowcount, cutoff=cutoff.isoformat())
    return result.rowcount


def default_jobs(settings: Settings | None = None) -> list[ScheduledJob]:
    settings = settings or get_settings()

    def every(minutes: int) -> timedelta:
        return timedelta(minutes=minutes)

    return [
        ScheduledJob("check_expired_bookings", check_expired_bookings, every(settings.EXPIRED_BOOKINGS_INTERVAL_MINUTES)),
        ScheduledJob("send_deadline_reminders", send_deadline_reminders, every(settings.DEADLINE_REMINDERS_INTERVAL_MINUTES)),
        ScheduledJob("auto_confirm_bookings", auto_confirm_bookings, every(settings.AUTO_CONFIRM_INTERVAL_MINUTES)),
        ScheduledJob("auto_complete_bookings", auto_complete_bookings, every(settings.AUTO_COMPLETE_INTERVAL_MINUTES)),
        ScheduledJob("send_review_prompts", send_review_prompts, every(settings.REVIEW_PROMPTS_INTERVAL_MINUTES)),
        ScheduledJob("expire_ended_subscriptions", expire_ended_subscriptions, every(settings.SUBSCRIPTION_EXPIRY_INTERVAL_MINUTES)),
        ScheduledJob("audit_ledger", audit_ledger, every(settings.LEDGER_AUDIT_INTERVAL_MINUTES)),
        ScheduledJob("cleanup_old_notifications", cleanup_old_notifications, every(settings.NOTIFICATION_CLEANUP_INTERVAL_MINUTES)),
    ]
