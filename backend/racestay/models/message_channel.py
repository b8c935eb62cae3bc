"""
Guest/host conversation opened when a booking is accepted.

Messages themselves belong to the messaging collaborator; this row only
records that the channel exists and whether it has been blocked.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey

from racestay.db.base import Base, TimestampMixin, UTCDateTime


class MessageChannel(Base, TimestampMixin):
    __tablename__ = "booking_conversations"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)
    guest_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_blocked = Column(Boolean, default=False, nullable=False)
    blocked_reason = Column(String(255), nullable=True)
    blocked_at = Column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<MessageChannel(booking={self.booking_id}, blocked={self.is_blocked})>"
