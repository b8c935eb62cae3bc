"""
Subscription reconciliation: applies payment-provider webhooks to accounts.

IDEMPOTENCY STRATEGY
====================

Providers deliver at least once and in no particular order. Two gates keep
a replay from doing anything twice:

  1. Dedup key. Each event is reduced to
       "{subscription id}:{kind}:{marker}"
     where the marker is the billing period end (renewals, payments,
     deletions), else the invoice id, else the provider event id. The key
     is inserted into processed_webhook_events in the SAME transaction as
     the event's effects; a second delivery finds the row (or loses the
     unique insert) and is reported as ExternalEventReplay.
     Updates are keyed on the provider event id: a subscription may flip
     cancel_at_period_end several times inside one period.

  2. State checks. Every mutation is gated on current state anyway: the
     welcome bonus only when the record is first created, reactivation only
     if the account is inactive, booking cancellation only for bookings
     still active, closing only a subscription that is not yet closed.

Effects run in one transaction: a failure anywhere (including the dedup
claim) rolls back everything, and the provider's retry starts clean.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.config import get_settings
from racestay.core.exceptions import ExternalEventReplay, InvalidWebhookEvent
from racestay.core.logging import get_logger
from racestay.core.metrics import record_webhook_event
from racestay.db.base import utcnow
from racestay.models.account_activation_log import ACTOR_SUBSCRIPTION
from racestay.models.booking import Booking, PENDING, ACCEPTED, CONFIRMED
from racestay.models.points_transaction import TransactionType
from racestay.models.processed_webhook_event import ProcessedWebhookEvent
from racestay.models.subscription import Subscription, ACTIVE, CANCELED
from racestay.models.subscription_payment import SubscriptionPayment, INITIAL, RENEWAL
from racestay.models.user import User
from racestay.schemas.webhook import (
    SubscriptionEvent,
    WebhookResult,
    CREATED,
    INITIAL_PAYMENT,
    RENEWED,
    UPDATED,
    DELETED,
)
from racestay.services import account_service, booking_service, cache_service, points_ledger
from racestay.services.interfaces.notifier import NotificationEvent
from racestay.services.notifier_factory import notify

logger = get_logger(__name__)
settings = get_settings()


def dedup_key(event: SubscriptionEvent) -> str:
    subject = event.subscription_id or event.customer_id or "none"
    if event.kind == UPDATED and event.event_id:
        marker = event.event_id
    elif event.period_end:
        marker = event.period_end.isoformat()
    else:
        marker = event.invoice_id or event.event_id
    if not marker:
        raise InvalidWebhookEvent("Event carries neither a period, an invoice nor an event id")
    return f"{subject}:{event.kind}:{marker}"


async def handle_event(
    db: AsyncSession,
    event: SubscriptionEvent,
    now: datetime | None = None,
) -> WebhookResult:
    """
    Apply one normalized event.

    Raises ExternalEventReplay when the event was already applied.
    """
    now = now or utcnow()
    key = dedup_key(event)

    already = await db.scalar(select(ProcessedWebhookEvent.id).where(ProcessedWebhookEvent.dedup_key == key))
    if already:
        _replay(event, key)

    handlers = {
        CREATED: _on_created,
        INITIAL_PAYMENT: _on_initial_payment,
        RENEWED: _on_renewed,
        UPDATED: _on_updated,
        DELETED: _on_deleted,
    }
    handler = handlers.get(event.kind)
    if handler is None:
        record_webhook_event(event.kind, "ignored")
        logger.info("webhook_event_ignored", kind=event.kind, provider_type=event.provider_type)
        return WebhookResult(status="ignored", kind=event.kind)

    try:
        db.add(
            ProcessedWebhookEvent(
                dedup_key=key,
                kind=event.kind,
                external_subscription_id=event.subscription_id,
                external_event_id=event.event_id,
            )
        )
        await db.flush()
    except IntegrityError:
        await db.rollback()
        # A concurrent delivery of the same event claimed the key first
        _replay(event, key)

    # Handler failures, unique-key collisions included, must reach the
    # provider as errors so the event is retried rather than acknowledged
    try:
        user_id, events, property_ids = await handler(db, event, now)
        await db.commit()
    except Exception as e:
        await db.rollback()
        record_webhook_event(event.kind, "error")
        logger.error("webhook_event_failed", kind=event.kind, dedup_key=key, error=str(e))
        raise

    record_webhook_event(event.kind, "applied")
    logger.info("webhook_event_applied", kind=event.kind, dedup_key=key, user_id=user_id)
    for property_id in property_ids:
        await cache_service.invalidate_calendar(property_id)
    await notify(events)
    return WebhookResult(status="applied", kind=event.kind, dedup_key=key, user_id=user_id)


def _replay(event: SubscriptionEvent, key: str) -> None:
    record_webhook_event(event.kind, "replay")
    logger.info("webhook_replay_ignored", kind=event.kind, dedup_key=key)
    raise ExternalEventReplay(f"Event {key} was already applied")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def _find_subscription(db: AsyncSession, event: SubscriptionEvent) -> Subscription | None:
    stmt = select(Subscription).execution_options(populate_existing=True)
    if event.subscription_id:
        sub = await db.scalar(stmt.where(Subscription.external_subscription_id == event.subscription_id))
        if sub:
            return sub
    if event.user_id:
        sub = await db.scalar(stmt.where(Subscription.user_id == event.user_id))
        if sub:
            return sub
    if event.customer_id:
        return await db.scalar(stmt.where(Subscription.external_customer_id == event.customer_id))
    return None


async def _resolve_user_id(db: AsyncSession, event: SubscriptionEvent) -> int | None:
    if event.user_id:
        return await db.scalar(select(User.id).where(User.id == event.user_id))
    sub = await _find_subscription(db, event)
    return sub.user_id if sub else None


async def _provision_user(db: AsyncSession, event: SubscriptionEvent) -> int:
    """Create the account carried in registration metadata (or reuse one with that email)."""
    email = (event.metadata.get("email") or "").strip().lower()
    if not email:
        raise InvalidWebhookEvent("Registration metadata is missing an email")

    existing = await db.scalar(select(User.id).where(User.email == email))
    if existing:
        return existing

    user = User(
        email=email,
        first_name=event.metadata.get("first_name") or event.metadata.get("firstName") or "",
        last_name=event.metadata.get("last_name") or event.metadata.get("lastName") or "",
        points_balance=0,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    logger.info("account_provisioned_from_webhook", user_id=user.id, email=email)
    return user.id


async def _upsert_subscription(
    db: AsyncSession,
    user_id: int,
    event: SubscriptionEvent,
) -> tuple[Subscription, bool]:
    """
    One record per user. The first record for a user earns the welcome
    bonus, whichever event happens to create it.
    """
    sub = await db.scalar(
        select(Subscription).where(Subscription.user_id == user_id).execution_options(populate_existing=True)
    )
    created = sub is None
    if created:
        sub = Subscription(user_id=user_id, plan_type=event.plan_type or settings.DEFAULT_PLAN_TYPE, status=ACTIVE)
        db.add(sub)

    if event.subscription_id:
        sub.external_subscription_id = event.subscription_id
    if event.customer_id:
        sub.external_customer_id = event.customer_id
    if event.plan_type:
        sub.plan_type = event.plan_type
    if event.period_start:
        sub.current_period_start = event.period_start
    if event.period_end:
        sub.current_period_end = event.period_end
    await db.flush()

    if created:
        await points_ledger.credit(
            db,
            user_id,
            settings.NEW_SUBSCRIBER_BONUS,
            TransactionType.SUBSCRIPTION_BONUS,
            "Welcome bonus for new subscribers",
        )
        logger.info("subscription_record_created", user_id=user_id, subscription_id=event.subscription_id)
    return sub, created


async def _reactivate(db: AsyncSession, user_id: int, reason: str) -> list[NotificationEvent]:
    events = await account_service.apply_account_activation(
        db, user_id, active=True, reason=reason, actor=ACTOR_SUBSCRIPTION
    )
    return events or []


def _record_payment(sub: Subscription, event: SubscriptionEvent, kind: str, now: datetime) -> SubscriptionPayment:
    sub.last_payment_amount = event.amount
    sub.last_payment_currency = event.currency
    sub.last_payment_at = now
    return SubscriptionPayment(
        subscription_id=sub.id,
        user_id=sub.user_id,
        kind=kind,
        amount=event.amount,
        currency=event.currency,
        external_invoice_id=event.invoice_id,
        paid_at=now,
    )


# ---------------------------------------------------------------------------
# Handlers: each returns (user_id, events to dispatch, properties to refresh)
# ---------------------------------------------------------------------------

async def _on_created(db: AsyncSession, event: SubscriptionEvent, now: datetime):
    if event.wants_new_account:
        user_id = await _provision_user(db, event)
    else:
        user_id = await _resolve_user_id(db, event)
    if user_id is None:
        raise InvalidWebhookEvent("Subscription event does not identify a user")

    sub, _ = await _upsert_subscription(db, user_id, event)
    sub.status = ACTIVE
    sub.cancel_at_period_end = False
    sub.cancellation_effective_at = None
    events = await _reactivate(db, user_id, "subscription_created")
    return user_id, events, []


async def _on_initial_payment(db: AsyncSession, event: SubscriptionEvent, now: datetime):
    user_id = await _resolve_user_id(db, event)
    if user_id is None:
        raise InvalidWebhookEvent("Payment event does not identify a user")

    sub, _ = await _upsert_subscription(db, user_id, event)
    db.add(_record_payment(sub, event, INITIAL, now))
    return user_id, [], []


async def _on_renewed(db: AsyncSession, event: SubscriptionEvent, now: datetime):
    user_id = await _resolve_user_id(db, event)
    if user_id is None:
        raise InvalidWebhookEvent("Renewal event does not identify a user")

    sub, _ = await _upsert_subscription(db, user_id, event)
    sub.status = ACTIVE
    sub.cancel_at_period_end = False
    sub.cancellation_effective_at = None
    db.add(_record_payment(sub, event, RENEWAL, now))

    events = await _reactivate(db, user_id, "subscription_renewed")
    await points_ledger.credit(
        db,
        user_id,
        settings.RENEWAL_BONUS,
        TransactionType.SUBSCRIPTION_BONUS,
        "Subscription renewal bonus",
    )
    events.append(
        NotificationEvent(
            kind="subscription_renewed",
            user_id=user_id,
            payload={
                "bonus": settings.RENEWAL_BONUS,
                "period_end": event.period_end.isoformat() if event.period_end else None,
            },
        )
    )
    return user_id, events, []


async def _on_updated(db: AsyncSession, event: SubscriptionEvent, now: datetime):
    sub = await _find_subscription(db, event)
    if sub is None:
        logger.warning("webhook_update_without_record", subscription_id=event.subscription_id)
        return None, [], []

    if event.period_start:
        sub.current_period_start = event.period_start
    if event.period_end:
        sub.current_period_end = event.period_end

    if event.status in (CANCELED, "inactive") and not _still_in_period(event, now):
        events, property_ids = await _close(db, sub, "subscription_ended", now)
        return sub.user_id, events, property_ids

    events = []
    ending = event.cancel_at_period_end or event.status in (CANCELED, "inactive")
    if ending and _still_in_period(event, now):
        if not sub.cancel_at_period_end:
            events.append(_pending_cancellation_notice(sub, event.period_end))
        sub.cancel_at_period_end = True
        sub.cancellation_effective_at = event.period_end
        return sub.user_id, events, []

    if sub.cancel_at_period_end:
        logger.info("subscription_cancellation_withdrawn", user_id=sub.user_id)
        sub.cancel_at_period_end = False
        sub.cancellation_effective_at = None

    if event.status and sub.status != CANCELED:
        sub.status = event.status
    return sub.user_id, events, []


async def _on_deleted(db: AsyncSession, event: SubscriptionEvent, now: datetime):
    sub = await _find_subscription(db, event)
    if sub is None:
        logger.warning("webhook_delete_without_record", subscription_id=event.subscription_id)
        return None, [], []

    if _still_in_period(event, now):
        # Paid period not over yet: keep the account, close at period end
        events = []
        if not sub.cancel_at_period_end:
            events.append(_pending_cancellation_notice(sub, event.period_end))
        sub.cancel_at_period_end = True
        sub.cancellation_effective_at = event.period_end
        return sub.user_id, events, []

    events, property_ids = await _close(db, sub, "subscription_ended", now)
    return sub.user_id, events, property_ids


def _still_in_period(event: SubscriptionEvent, now: datetime) -> bool:
    return event.period_end is not None and event.period_end > now


def _pending_cancellation_notice(sub: Subscription, effective_at: datetime) -> NotificationEvent:
    logger.info("subscription_cancellation_scheduled", user_id=sub.user_id, effective_at=effective_at.isoformat())
    return NotificationEvent(
        kind="subscription_cancelled",
        user_id=sub.user_id,
        payload={"immediate": False, "effective_at": effective_at.isoformat()},
    )


async def _close(
    db: AsyncSession,
    sub: Subscription,
    reason: str,
    now: datetime,
) -> tuple[list[NotificationEvent], list[int]]:
    """
    Immediate end of a subscription.

    Guest bookings are cancelled first (refunds follow the guest rules),
    then the account and its listings are deactivated and the balance is
    forfeited.
    """
    user_active = await db.scalar(select(User.is_active).where(User.id == sub.user_id))
    if sub.status == CANCELED and not user_active:
        logger.info("subscription_already_closed", user_id=sub.user_id)
        return [], []

    sub.status = CANCELED
    sub.cancel_at_period_end = False
    if sub.cancellation_effective_at is None:
        sub.cancellation_effective_at = now

    events: list[NotificationEvent] = []
    property_ids: list[int] = []
    result = await db.execute(
        select(Booking)
        .where(Booking.guest_id == sub.user_id, Booking.status.in_((PENDING, ACCEPTED, CONFIRMED)))
        .order_by(Booking.id)
        .execution_options(populate_existing=True)
    )
    for booking in result.scalars().all():
        events.extend(await booking_service.cancel_for_system(db, booking, reason, today=now.date()))
        property_ids.append(booking.property_id)

    events.extend(
        await account_service.apply_account_activation(
            db, sub.user_id, active=False, reason=reason, actor=ACTOR_SUBSCRIPTION
        )
        or []
    )
    await points_ledger.adjust_to_zero(db, sub.user_id, "Points forfeited: subscription ended")

    events.append(
        NotificationEvent(
            kind="subscription_cancelled",
            user_id=sub.user_id,
            payload={"immediate": True, "effective_at": now.isoformat()},
        )
    )
    logger.info("subscription_closed", user_id=sub.user_id, bookings_cancelled=len(property_ids))
    return events, property_ids


async def expire_ended_subscriptions(db: AsyncSession, now: datetime | None = None) -> int:
    """Close subscriptions whose end-of-period cancellation date has passed."""
    now = now or utcnow()
    result = await db.execute(
        select(Subscription.id).where(
            Subscription.cancel_at_period_end.is_(True),
            Subscription.cancellation_effective_at <= now,
            Subscription.status != CANCELED,
        )
    )
    closed = 0
    for sub_id in list(result.scalars().all()):
        try:
            sub = await db.get(Subscription, sub_id, populate_existing=True)
            events, property_ids = await _close(db, sub, "subscription_period_ended", now)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("subscription_expiry_failed", subscription_id=sub_id, error=str(e))
            continue

        closed += 1
        for property_id in property_ids:
            await cache_service.invalidate_calendar(property_id)
        await notify(events)
    return closed


async def get_subscription(db: AsyncSession, user_id: int) -> Subscription | None:
    return await db.scalar(select(Subscription).where(Subscription.user_id == user_id))
