"""
Append-only log of every points balance change.

Key design decisions:
- `amount` is signed: credits positive, debits negative
- `balance_after` snapshots the balance the same statement produced, which
  makes audits readable without replaying the whole log
- Rows are never updated or deleted; sum(amount) per user must equal
  users.points_balance
"""

import enum

from sqlalchemy import Column, Integer, String, Text, ForeignKey, Index

from racestay.db.base import Base, TimestampMixin


class TransactionType(str, enum.Enum):
    BOOKING_PAYMENT = "booking_payment"
    BOOKING_EARNING = "booking_earning"
    BOOKING_REFUND = "booking_refund"
    SUBSCRIPTION_BONUS = "subscription_bonus"


class PointsTransaction(Base, TimestampMixin):
    __tablename__ = "points_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(String(30), nullable=False)
    description = Column(Text, nullable=False, default="")
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    balance_after = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_points_transactions_user_created", "user_id", "created_at"),
    )

    @property
    def transaction_type(self) -> TransactionType:
        return TransactionType(self.type)

    def __repr__(self) -> str:
        return f"<PointsTransaction(id={self.id}, user={self.user_id}, amount={self.amount}, type={self.type})>"
