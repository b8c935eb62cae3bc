"""
Booking model: a guest's request to stay with a host for a race.

Key design decisions:
- `points_cost` is captured at creation and never recalculated
- `status` only moves through conditional UPDATEs keyed on the current
  status (see services.booking_service), so one transition wins per state
- Per-transition timestamps are kept instead of a history table
- refund_amount / penalty_amount record what a cancellation settled
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Date,
    ForeignKey,
    CheckConstraint,
    Index,
)

from racestay.db.base import Base, TimestampMixin, UTCDateTime

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"
EXPIRED = "expired"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELLED = "cancelled"

BOOKING_STATUSES = (PENDING, ACCEPTED, REJECTED, EXPIRED, CONFIRMED, COMPLETED, CANCELLED)
TERMINAL_STATUSES = (REJECTED, EXPIRED, COMPLETED, CANCELLED)

# Statuses in which the stay holds reserved dates and transferred points
SETTLED_STATUSES = (ACCEPTED, CONFIRMED)

CANCELLED_BY_GUEST = "guest"
CANCELLED_BY_HOST = "host"
CANCELLED_BY_SYSTEM = "system"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    race_id = Column(Integer, ForeignKey("races.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    guest_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    guests_count = Column(Integer, nullable=False, default=1)
    request_message = Column(Text, nullable=True)
    points_cost = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=PENDING)

    host_response_deadline = Column(UTCDateTime(), nullable=False)
    host_response_message = Column(Text, nullable=True)

    accepted_at = Column(UTCDateTime(), nullable=True)
    rejected_at = Column(UTCDateTime(), nullable=True)
    expired_at = Column(UTCDateTime(), nullable=True)
    confirmed_at = Column(UTCDateTime(), nullable=True)
    completed_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    cancelled_by = Column(String(10), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    refund_amount = Column(Integer, nullable=True)
    penalty_amount = Column(Integer, nullable=True)

    reminder_sent_at = Column(UTCDateTime(), nullable=True)
    review_prompt_sent_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint("guests_count > 0", name="check_booking_guests_positive"),
        CheckConstraint("points_cost >= 0", name="check_booking_cost_non_negative"),
        CheckConstraint("check_out > check_in", name="check_booking_dates_ordered"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'expired', "
            "'confirmed', 'completed', 'cancelled')",
            name="check_booking_status",
        ),
        # Scheduler sweeps filter by status and a date/deadline column
        Index("ix_bookings_status_deadline", "status", "host_response_deadline"),
        Index("ix_bookings_status_check_in", "status", "check_in"),
        Index("ix_bookings_status_check_out", "status", "check_out"),
    )

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, guest={self.guest_id}, host={self.host_id}, "
            f"status={self.status}, cost={self.points_cost})>"
        )
