"""
Payment history for a subscription (initial purchase and renewals).
"""

from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint

from racestay.db.base import Base, TimestampMixin, UTCDateTime

INITIAL = "initial"
RENEWAL = "renewal"


class SubscriptionPayment(Base, TimestampMixin):
    __tablename__ = "subscription_payments"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    external_invoice_id = Column(String(255), nullable=True)
    paid_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (
        CheckConstraint("kind IN ('initial', 'renewal')", name="check_subscription_payment_kind"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionPayment(subscription={self.subscription_id}, kind={self.kind}, amount={self.amount})>"
