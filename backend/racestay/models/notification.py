"""
Outbox of lifecycle events for the notification collaborator.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, JSON, Index

from racestay.db.base import Base, TimestampMixin


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(String(50), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_notifications_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user={self.user_id}, kind={self.kind})>"
