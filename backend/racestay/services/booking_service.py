"""
Booking state machine with concurrency-safe settlement.

    pending --accept--> accepted --confirm--> confirmed --complete--> completed
       |                   |                     |
       +--reject--> rejected                     |
       +--expire--> expired                      |
       +--cancel--> cancelled <------cancel------+---- (from accepted too)

CONCURRENCY STRATEGY: Conditional transition, then settle
=========================================================

Problem:
  Host presses "accept" twice (or the guest cancels while the host
  accepts, or the expiry sweep runs at the same moment). Each caller reads
  status=pending, each debits the guest. Result: double payment.

Solution:
  The status check and the status write are one statement:

    UPDATE bookings SET status = 'accepted', accepted_at = :now
    WHERE id = :booking_id AND status = 'pending'

  If rows_affected == 0 another transition won; we raise StaleBookingState
  and never reach the ledger. If it matched, the ledger transfer,
  availability reservation, race closure and channel creation run in the
  same database transaction. Any failure there (insufficient points,
  conflicting dates, a race another accept already closed) rolls everything
  back, including the status change: the booking stays `pending`.

  On PostgreSQL the row lock taken by the UPDATE makes the second caller
  wait for the first to commit, then re-evaluate `status = 'pending'`
  against the committed row, so exactly one accept applies.

Every public transition commits its own unit of work. Notifications are
dispatched only after the commit, and a failing notifier never undoes it.
"""

from datetime import date, datetime, timedelta

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.core.config import get_settings
from racestay.core.exceptions import (
    AccountInactive,
    AvailabilityConflict,
    BookingNotFound,
    InsufficientPoints,
    InvalidBookingRequest,
    InvalidDateRange,
    MissingHost,
    MissingProperty,
    MissingRace,
    NotBookingParticipant,
    StaleBookingState,
    UserNotFound,
)
from racestay.core.logging import get_logger
from racestay.core.metrics import booking_transition_latency, record_booking_transition
from racestay.db.base import utcnow
from racestay.models.booking import (
    Booking,
    PENDING,
    ACCEPTED,
    REJECTED,
    EXPIRED,
    CONFIRMED,
    COMPLETED,
    CANCELLED,
    SETTLED_STATUSES,
    CANCELLED_BY_GUEST,
    CANCELLED_BY_HOST,
    CANCELLED_BY_SYSTEM,
)
from racestay.models.message_channel import MessageChannel
from racestay.models.points_transaction import TransactionType
from racestay.models.property import Property
from racestay.models.race import Race
from racestay.models.user import User
from racestay.schemas.booking import BookingCreate
from racestay.services import availability_service, cache_service, cost_calculator, points_ledger
from racestay.services.interfaces.notifier import NotificationEvent
from racestay.services.notifier_factory import notify

logger = get_logger(__name__)
settings = get_settings()

ACTIVE_STATUSES = (PENDING, ACCEPTED, CONFIRMED)


async def _load(db: AsyncSession, booking_id: int) -> Booking:
    booking = await db.get(Booking, booking_id, populate_existing=True)
    if not booking:
        raise BookingNotFound(f"Booking {booking_id} not found")
    return booking


async def _transition(
    db: AsyncSession,
    booking_id: int,
    from_statuses: tuple[str, ...],
    to_status: str,
    transition: str,
    **values,
) -> None:
    """Single conditional UPDATE; raises StaleBookingState if another transition won."""
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status.in_(from_statuses))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    actual = await db.scalar(select(Booking.status).where(Booking.id == booking_id))
    if actual is None:
        raise BookingNotFound(f"Booking {booking_id} not found")
    record_booking_transition(transition, "stale")
    logger.warning(
        "booking_transition_stale",
        booking_id=booking_id,
        transition=transition,
        expected=list(from_statuses),
        actual=actual,
    )
    raise StaleBookingState(booking_id, from_statuses, actual)


def _both_parties(kind: str, booking: Booking, **payload) -> list[NotificationEvent]:
    return [
        NotificationEvent(kind=kind, user_id=booking.guest_id, booking_id=booking.id, payload=payload),
        NotificationEvent(kind=kind, user_id=booking.host_id, booking_id=booking.id, payload=payload),
    ]


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

async def create_booking_request(
    db: AsyncSession,
    guest_id: int,
    data: BookingCreate,
    today: date | None = None,
) -> Booking:
    """
    Create a `pending` booking.

    The guest's balance is only checked here; points move when the host
    accepts.
    """
    today = today or utcnow().date()

    if data.check_in < today:
        raise InvalidDateRange("Check-in date cannot be in the past")
    nights = cost_calculator.calculate_nights(data.check_in, data.check_out)
    if nights > settings.MAX_BOOKING_NIGHTS:
        raise InvalidDateRange(f"Bookings are limited to {settings.MAX_BOOKING_NIGHTS} nights")

    race = await db.get(Race, data.race_id, populate_existing=True)
    if not race or not race.is_active:
        raise MissingRace(f"Race {data.race_id} not found")
    prop = await db.get(Property, race.property_id, populate_existing=True)
    if not prop or not prop.is_active:
        raise MissingProperty(f"Property {race.property_id} not found")
    host = await db.get(User, race.host_id, populate_existing=True)
    if not host or not host.is_active:
        raise MissingHost(f"Host {race.host_id} not found")
    guest = await db.get(User, guest_id, populate_existing=True)
    if not guest:
        raise UserNotFound(f"User {guest_id} not found")
    if not guest.is_active:
        raise AccountInactive("Your account is not active")

    if guest_id == host.id:
        raise InvalidBookingRequest("You cannot book your own property")
    if data.guests_count > prop.max_guests:
        raise InvalidBookingRequest(f"This property hosts at most {prop.max_guests} guests")
    if not race.is_available_for_booking:
        raise AvailabilityConflict("This race is no longer accepting bookings")

    duplicate = await db.scalar(
        select(Booking.id).where(
            Booking.guest_id == guest_id,
            Booking.race_id == race.id,
            Booking.status.in_(ACTIVE_STATUSES),
        )
    )
    if duplicate:
        raise InvalidBookingRequest("You already have an active booking for this race")

    if not await availability_service.is_available(db, prop.id, data.check_in, data.check_out):
        raise AvailabilityConflict("The selected dates are not available")

    points_cost = await cost_calculator.calculate_booking_cost(db, race.id, data.check_in, data.check_out)
    balance = await points_ledger.get_balance(db, guest_id)
    if balance < points_cost:
        record_booking_transition("request", "insufficient_points")
        logger.warning(
            "booking_request_insufficient_points",
            guest_id=guest_id,
            race_id=race.id,
            balance=balance,
            required=points_cost,
        )
        raise InsufficientPoints(balance=balance, required=points_cost, user_id=guest_id)

    booking = Booking(
        race_id=race.id,
        property_id=prop.id,
        host_id=host.id,
        guest_id=guest_id,
        check_in=data.check_in,
        check_out=data.check_out,
        guests_count=data.guests_count,
        request_message=data.request_message,
        points_cost=points_cost,
        status=PENDING,
        host_response_deadline=utcnow() + timedelta(hours=settings.BOOKING_RESPONSE_HOURS),
    )
    db.add(booking)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    record_booking_transition("request", "success")
    logger.info(
        "booking_requested",
        booking_id=booking.id,
        guest_id=guest_id,
        host_id=host.id,
        race_id=race.id,
        nights=nights,
        points_cost=points_cost,
    )
    await notify([
        NotificationEvent(
            kind="booking_requested",
            user_id=host.id,
            booking_id=booking.id,
            payload={"guest_id": guest_id, "check_in": data.check_in.isoformat(), "points_cost": points_cost},
        )
    ])
    return booking


# ---------------------------------------------------------------------------
# Host response
# ---------------------------------------------------------------------------

async def accept_booking(db: AsyncSession, booking_id: int, host_id: int) -> Booking:
    """
    Accept a pending booking and settle it.

    All-or-nothing: status change, guest->host transfer, date reservation,
    race closure and message channel commit together or not at all.
    """
    with booking_transition_latency.labels(transition="accept").time():
        booking = await _load(db, booking_id)
        if booking.host_id != host_id:
            raise NotBookingParticipant("Only the host can accept this booking")
        await _require_active_parties(db, booking)

        try:
            await _transition(db, booking_id, (PENDING,), ACCEPTED, "accept", accepted_at=utcnow())
            if booking.points_cost > 0:
                await points_ledger.transfer(
                    db,
                    from_user_id=booking.guest_id,
                    to_user_id=booking.host_id,
                    amount=booking.points_cost,
                    debit_type=TransactionType.BOOKING_PAYMENT,
                    credit_type=TransactionType.BOOKING_EARNING,
                    description=f"Booking #{booking.id}: {booking.nights} nights",
                    booking_id=booking.id,
                )
            await availability_service.reserve(
                db,
                booking.property_id,
                availability_service.stay_dates(booking.check_in, booking.check_out),
                booking.id,
            )
            await _close_race(db, booking)
            await _open_channel(db, booking)
            await db.commit()
        except StaleBookingState:
            await db.rollback()
            raise
        except Exception as e:
            await db.rollback()
            record_booking_transition("accept", "error")
            logger.warning("booking_accept_failed", booking_id=booking_id, error=str(e))
            raise

    booking = await _load(db, booking_id)
    record_booking_transition("accept", "success")
    logger.info(
        "booking_accepted",
        booking_id=booking.id,
        guest_id=booking.guest_id,
        host_id=booking.host_id,
        points_cost=booking.points_cost,
    )
    await cache_service.invalidate_calendar(booking.property_id)
    await notify(_both_parties("booking_accepted", booking, points_cost=booking.points_cost))
    return booking


async def _require_active_parties(db: AsyncSession, booking: Booking) -> None:
    rows = await db.execute(
        select(User.id, User.is_active).where(User.id.in_((booking.guest_id, booking.host_id)))
    )
    active = dict(rows.all())
    if not active.get(booking.host_id):
        raise AccountInactive("The host account is not active")
    if not active.get(booking.guest_id):
        raise AccountInactive("The guest account is not active")


async def _close_race(db: AsyncSession, booking: Booking) -> None:
    """One accepted stay per race: only the accept that flips the flag may settle."""
    result = await db.execute(
        update(Race)
        .where(Race.id == booking.race_id, Race.is_available_for_booking.is_(True))
        .values(is_available_for_booking=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise AvailabilityConflict("This race already has an accepted stay")


async def _reopen_race(db: AsyncSession, booking: Booking) -> None:
    still_held = await db.scalar(
        select(func.count(Booking.id)).where(
            Booking.race_id == booking.race_id,
            Booking.id != booking.id,
            Booking.status.in_(SETTLED_STATUSES),
        )
    )
    if still_held:
        logger.info("race_kept_closed", race_id=booking.race_id, booking_id=booking.id, other_settled=still_held)
        return
    await db.execute(
        update(Race)
        .where(Race.id == booking.race_id)
        .values(is_available_for_booking=True)
        .execution_options(synchronize_session=False)
    )


async def _open_channel(db: AsyncSession, booking: Booking) -> None:
    existing = await db.scalar(select(MessageChannel.id).where(MessageChannel.booking_id == booking.id))
    if existing is None:
        db.add(MessageChannel(booking_id=booking.id, guest_id=booking.guest_id, host_id=booking.host_id))
        await db.flush()


async def process_booking_payment(
    db: AsyncSession,
    booking_id: int,
    guest_id: int,
    host_id: int,
    race_id: int,
    check_in: date,
    check_out: date,
) -> int:
    """
    Payment entry point keyed on the full booking identity.

    Rejects calls whose identifiers disagree with the stored booking, then
    performs the accept. Returns the points charged.
    """
    booking = await _load(db, booking_id)
    if (
        booking.guest_id != guest_id
        or booking.host_id != host_id
        or booking.race_id != race_id
        or booking.check_in != check_in
        or booking.check_out != check_out
    ):
        raise InvalidBookingRequest(f"Payment details do not match booking {booking_id}")
    booking = await accept_booking(db, booking_id, host_id)
    return booking.points_cost


async def reject_booking(
    db: AsyncSession,
    booking_id: int,
    host_id: int,
    message: str | None = None,
) -> Booking:
    """No points ever moved for a pending booking, so nothing to settle."""
    booking = await _load(db, booking_id)
    if booking.host_id != host_id:
        raise NotBookingParticipant("Only the host can reject this booking")

    try:
        await _transition(
            db,
            booking_id,
            (PENDING,),
            REJECTED,
            "reject",
            rejected_at=utcnow(),
            host_response_message=message,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    booking = await _load(db, booking_id)
    record_booking_transition("reject", "success")
    logger.info("booking_rejected", booking_id=booking.id, host_id=host_id)
    await notify([
        NotificationEvent(
            kind="booking_rejected",
            user_id=booking.guest_id,
            booking_id=booking.id,
            payload={"message": message},
        )
    ])
    return booking


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

def guest_refund_amount(points_cost: int, policy_name: str | None, check_in: date, today: date) -> int:
    """
    Refund owed to a guest who cancels a settled booking.

    Cancelling at least `full_refund_days` before check-in refunds the full
    cost; later cancellations refund `late_refund_percent` of it.
    """
    policies = settings.CANCELLATION_POLICIES
    policy = policies.get(policy_name or "") or policies[settings.DEFAULT_CANCELLATION_POLICY]
    days_before = (check_in - today).days
    if days_before >= policy["full_refund_days"]:
        return points_cost
    return points_cost * policy["late_refund_percent"] // 100


async def _cancel_in_transaction(
    db: AsyncSession,
    booking: Booking,
    cancelled_by: str,
    reason: str | None,
    today: date,
) -> list[NotificationEvent]:
    """
    Apply a cancellation without committing.

    Returns the events to dispatch after the caller commits.
    """
    now = utcnow()
    cancel_values = {"cancelled_at": now, "cancelled_by": cancelled_by, "cancellation_reason": reason}

    if booking.status == PENDING:
        if cancelled_by == CANCELLED_BY_HOST:
            raise InvalidBookingRequest("Pending requests are declined with reject, not cancelled")
        await _transition(db, booking.id, (PENDING,), CANCELLED, "cancel", **cancel_values)
        logger.info("booking_withdrawn", booking_id=booking.id, cancelled_by=cancelled_by)
        return [
            NotificationEvent(
                kind="booking_cancelled",
                user_id=booking.host_id,
                booking_id=booking.id,
                payload={"cancelled_by": cancelled_by, "reason": reason, "refund_amount": 0},
            )
        ]

    if booking.status not in SETTLED_STATUSES:
        raise StaleBookingState(booking.id, (PENDING,) + SETTLED_STATUSES, booking.status)

    description = f"Booking #{booking.id} cancelled by {cancelled_by}"
    events = []

    if cancelled_by == CANCELLED_BY_HOST:
        # Penalty on the host; the guest gets the full original cost back
        penalty = booking.points_cost or settings.HOST_CANCELLATION_PENALTY_FLOOR
        refund = booking.points_cost
        await _transition(
            db,
            booking.id,
            SETTLED_STATUSES,
            CANCELLED,
            "cancel",
            refund_amount=refund,
            penalty_amount=penalty,
            **cancel_values,
        )
        await points_ledger.debit(
            db,
            booking.host_id,
            penalty,
            TransactionType.BOOKING_REFUND,
            f"Cancellation penalty: {description}",
            booking_id=booking.id,
            allow_negative=True,
        )
        if refund > 0:
            await points_ledger.credit(
                db,
                booking.guest_id,
                refund,
                TransactionType.BOOKING_REFUND,
                f"Refund: {description}",
                booking_id=booking.id,
            )
        events.append(
            NotificationEvent(
                kind="cancellation_penalty",
                user_id=booking.host_id,
                booking_id=booking.id,
                payload={"penalty_amount": penalty},
            )
        )
    else:
        # Guest or system cancellation: the host hands back the policy refund
        policy = await db.scalar(select(Property.cancellation_policy).where(Property.id == booking.property_id))
        refund = guest_refund_amount(booking.points_cost, policy, booking.check_in, today)
        penalty = 0
        await _transition(
            db,
            booking.id,
            SETTLED_STATUSES,
            CANCELLED,
            "cancel",
            refund_amount=refund,
            penalty_amount=0,
            **cancel_values,
        )
        if refund > 0:
            await points_ledger.transfer(
                db,
                from_user_id=booking.host_id,
                to_user_id=booking.guest_id,
                amount=refund,
                debit_type=TransactionType.BOOKING_REFUND,
                credit_type=TransactionType.BOOKING_REFUND,
                description=f"Refund: {description}",
                booking_id=booking.id,
                allow_negative=True,
            )

    await availability_service.release(
        db,
        booking.property_id,
        availability_service.stay_dates(booking.check_in, booking.check_out),
        booking.id,
    )
    await _reopen_race(db, booking)
    await db.execute(
        update(MessageChannel)
        .where(MessageChannel.booking_id == booking.id, MessageChannel.is_blocked.is_(False))
        .values(is_blocked=True, blocked_reason="booking_cancelled", blocked_at=now)
        .execution_options(synchronize_session=False)
    )

    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        cancelled_by=cancelled_by,
        refund_amount=refund,
        penalty_amount=penalty,
    )
    events.extend(
        _both_parties(
            "booking_cancelled",
            booking,
            cancelled_by=cancelled_by,
            reason=reason,
            refund_amount=refund,
        )
    )
    return events


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    actor_id: int,
    reason: str | None = None,
    today: date | None = None,
) -> Booking:
    """
    Cancel on behalf of the guest or the host.

    - guest, pending: withdrawal, no points move
    - guest, accepted/confirmed: host refunds the guest per cancellation policy
    - host, accepted/confirmed: host pays a penalty of the full cost, guest is
      refunded the full cost
    """
    today = today or utcnow().date()

    with booking_transition_latency.labels(transition="cancel").time():
        booking = await _load(db, booking_id)
        if actor_id == booking.guest_id:
            cancelled_by = CANCELLED_BY_GUEST
        elif actor_id == booking.host_id:
            cancelled_by = CANCELLED_BY_HOST
        else:
            raise NotBookingParticipant("Only the guest or the host can cancel this booking")

        try:
            events = await _cancel_in_transaction(db, booking, cancelled_by, reason, today)
            await db.commit()
        except StaleBookingState:
            await db.rollback()
            raise
        except Exception as e:
            await db.rollback()
            record_booking_transition("cancel", "error")
            logger.warning("booking_cancel_failed", booking_id=booking_id, error=str(e))
            raise

    record_booking_transition("cancel", "success")
    await cache_service.invalidate_calendar(booking.property_id)
    await notify(events)
    return await _load(db, booking_id)


async def cancel_for_system(
    db: AsyncSession,
    booking: Booking,
    reason: str,
    today: date | None = None,
) -> list[NotificationEvent]:
    """
    Cancel inside the caller's transaction (subscription ended, account
    closed). Settled bookings follow the guest refund rules.
    """
    return await _cancel_in_transaction(db, booking, CANCELLED_BY_SYSTEM, reason, today or utcnow().date())


# ---------------------------------------------------------------------------
# Scheduler sweeps
# ---------------------------------------------------------------------------

async def expire_pending_bookings(db: AsyncSession, now: datetime | None = None) -> int:
    """Pending bookings past their response deadline become `expired`. No points move."""
    now = now or utcnow()
    result = await db.execute(
        select(Booking.id).where(Booking.status == PENDING, Booking.host_response_deadline < now)
    )
    candidates = list(result.scalars().all())

    expired = []
    for booking_id in candidates:
        update_result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status == PENDING,
                Booking.host_response_deadline < now,
            )
            .values(status=EXPIRED, expired_at=now)
            .execution_options(synchronize_session=False)
        )
        # Zero rows: the host answered between our SELECT and UPDATE
        if update_result.rowcount == 1:
            expired.append(booking_id)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    events = []
    for booking_id in expired:
        booking = await _load(db, booking_id)
        record_booking_transition("expire", "success")
        events.extend(_both_parties("booking_expired", booking))
    await notify(events)

    if expired:
        logger.info("bookings_expired", count=len(expired), booking_ids=expired)
    return len(expired)


async def check_expired_bookings(db: AsyncSession) -> int:
    return await expire_pending_bookings(db)


async def auto_confirm_bookings(db: AsyncSession, today: date | None = None) -> int:
    """Accepted bookings whose check-in has arrived become `confirmed`. No points move."""
    today = today or utcnow().date()
    now = utcnow()
    result = await db.execute(
        select(Booking.id).where(Booking.status == ACCEPTED, Booking.check_in <= today)
    )
    candidates = list(result.scalars().all())

    confirmed = []
    for booking_id in candidates:
        update_result = await db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == ACCEPTED)
            .values(status=CONFIRMED, confirmed_at=now)
            .execution_options(synchronize_session=False)
        )
        if update_result.rowcount == 1:
            confirmed.append(booking_id)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    events = []
    for booking_id in confirmed:
        booking = await _load(db, booking_id)
        record_booking_transition("confirm", "success")
        events.extend(_both_parties("booking_confirmed", booking, check_in=booking.check_in.isoformat()))
    await notify(events)

    if confirmed:
        logger.info("bookings_confirmed", count=len(confirmed), booking_ids=confirmed)
    return len(confirmed)


async def auto_complete_bookings(db: AsyncSession, today: date | None = None) -> int:
    """
    Confirmed bookings whose check-out has arrived become `completed` and
    the host earns the hosting reward (nights x HOSTING_REWARD_PER_NIGHT),
    on top of the payment received at acceptance.

    Each booking is its own unit of work: a host with a frozen ledger does
    not hold back everybody else's completion.
    """
    today = today or utcnow().date()
    result = await db.execute(
        select(Booking.id).where(Booking.status == CONFIRMED, Booking.check_out <= today)
    )
    candidates = list(result.scalars().all())

    completed = 0
    for booking_id in candidates:
        try:
            booking = await _load(db, booking_id)
            reward = booking.nights * settings.HOSTING_REWARD_PER_NIGHT
            await _transition(db, booking_id, (CONFIRMED,), COMPLETED, "complete", completed_at=utcnow())
            await points_ledger.credit(
                db,
                booking.host_id,
                reward,
                TransactionType.BOOKING_EARNING,
                f"Hosting reward: {booking.nights} nights x {settings.HOSTING_REWARD_PER_NIGHT} points",
                booking_id=booking.id,
            )
            await db.commit()
        except StaleBookingState:
            await db.rollback()
            continue
        except Exception as e:
            await db.rollback()
            record_booking_transition("complete", "error")
            logger.error("booking_completion_failed", booking_id=booking_id, error=str(e))
            continue

        completed += 1
        record_booking_transition("complete", "success")
        logger.info("booking_completed", booking_id=booking_id, host_id=booking.host_id, reward=reward)
        booking = await _load(db, booking_id)
        await notify(_both_parties("booking_completed", booking, hosting_reward=reward))

    return completed


async def send_deadline_reminders(db: AsyncSession, now: datetime | None = None) -> int:
    """Remind hosts of pending requests whose deadline is near. Each booking is reminded once."""
    now = now or utcnow()
    horizon = now + timedelta(hours=settings.DEADLINE_REMINDER_HOURS)
    result = await db.execute(
        select(Booking.id).where(
            Booking.status == PENDING,
            Booking.reminder_sent_at.is_(None),
            Booking.host_response_deadline > now,
            Booking.host_response_deadline <= horizon,
        )
    )
    reminded = []
    for booking_id in result.scalars().all():
        update_result = await db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == PENDING, Booking.reminder_sent_at.is_(None))
            .values(reminder_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        if update_result.rowcount == 1:
            reminded.append(booking_id)
    await db.commit()

    events = []
    for booking_id in reminded:
        booking = await _load(db, booking_id)
        hours_left = max(0, int((booking.host_response_deadline - now).total_seconds() // 3600))
        events.append(
            NotificationEvent(
                kind="booking_deadline_reminder",
                user_id=booking.host_id,
                booking_id=booking.id,
                payload={"hours_left": hours_left},
            )
        )
    await notify(events)
    return len(reminded)


async def send_review_prompts(db: AsyncSession, now: datetime | None = None) -> int:
    """Prompt both parties for a review of stays completed a few days ago, once per booking."""
    now = now or utcnow()
    newest = now - timedelta(days=settings.REVIEW_PROMPT_MIN_DAYS)
    oldest = now - timedelta(days=settings.REVIEW_PROMPT_MAX_DAYS)
    result = await db.execute(
        select(Booking.id).where(
            Booking.status == COMPLETED,
            Booking.review_prompt_sent_at.is_(None),
            Booking.completed_at <= newest,
            Booking.completed_at >= oldest,
        )
    )
    prompted = []
    for booking_id in result.scalars().all():
        update_result = await db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.review_prompt_sent_at.is_(None))
            .values(review_prompt_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        if update_result.rowcount == 1:
            prompted.append(booking_id)
    await db.commit()

    events = []
    for booking_id in prompted:
        events.extend(_both_parties("review_prompt", await _load(db, booking_id)))
    await notify(events)
    return len(prompted)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_booking(db: AsyncSession, booking_id: int, user_id: int) -> Booking:
    booking = await _load(db, booking_id)
    if user_id not in (booking.guest_id, booking.host_id):
        raise NotBookingParticipant("You are not part of this booking")
    return booking


async def list_user_bookings(
    db: AsyncSession,
    user_id: int,
    role: str | None = None,
    status: str | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Booking], int]:
    """
    Bookings where the user is guest and/or host, newest first.

    role: 'guest', 'host' or None for both. start/end filter on stays that
    overlap [start, end).
    """
    if role == "guest":
        conditions = [Booking.guest_id == user_id]
    elif role == "host":
        conditions = [Booking.host_id == user_id]
    else:
        conditions = [or_(Booking.guest_id == user_id, Booking.host_id == user_id)]
    if status:
        conditions.append(Booking.status == status)
    if start:
        conditions.append(Booking.check_out > start)
    if end:
        conditions.append(Booking.check_in < end)

    total = await db.scalar(select(func.count(Booking.id)).where(*conditions))
    result = await db.execute(
        select(Booking)
        .where(*conditions)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .offset(offset)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all()), total or 0


async def get_booking_stats(db: AsyncSession, user_id: int) -> dict:
    async def counts(column) -> dict[str, int]:
        rows = await db.execute(
            select(Booking.status, func.count(Booking.id)).where(column == user_id).group_by(Booking.status)
        )
        return {status: count for status, count in rows.all()}

    paid_statuses = (ACCEPTED, CONFIRMED, COMPLETED)
    spent = await db.scalar(
        select(func.coalesce(func.sum(Booking.points_cost), 0)).where(
            Booking.guest_id == user_id, Booking.status.in_(paid_statuses)
        )
    )
    earned = await db.scalar(
        select(func.coalesce(func.sum(Booking.points_cost), 0)).where(
            Booking.host_id == user_id, Booking.status.in_(paid_statuses)
        )
    )
    return {
        "user_id": user_id,
        "as_guest": await counts(Booking.guest_id),
        "as_host": await counts(Booking.host_id),
        "points_spent": int(spent),
        "points_earned": int(earned),
    }
