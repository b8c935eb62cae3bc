"""
Subscription state mirrored from the payment provider.

Key design decisions:
- One record per user (unique user_id); webhooks upsert it
- Never deleted; a cancelled subscription keeps its history
- `cancellation_effective_at` holds the end of the paid period for an
  end-of-period cancellation, picked up by the expiry job
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey

from racestay.db.base import Base, TimestampMixin, UTCDateTime

ACTIVE = "active"
CANCELED = "canceled"
PAST_DUE = "past_due"
INACTIVE = "inactive"


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    external_subscription_id = Column(String(255), nullable=True, index=True)
    external_customer_id = Column(String(255), nullable=True, index=True)
    plan_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=ACTIVE)
    current_period_start = Column(UTCDateTime(), nullable=True)
    current_period_end = Column(UTCDateTime(), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    cancellation_effective_at = Column(UTCDateTime(), nullable=True)
    last_payment_amount = Column(Integer, nullable=True)  # minor currency units
    last_payment_currency = Column(String(3), nullable=True)
    last_payment_at = Column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<Subscription(user={self.user_id}, status={self.status}, ext={self.external_subscription_id})>"
