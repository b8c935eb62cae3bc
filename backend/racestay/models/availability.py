"""
Per-date calendar entry of a property.

Key design decisions:
- Unique (property_id, date): two bookings can never both insert a row
  for the same night; the loser hits an IntegrityError
- `booking_id` is set only for `reserved` rows so a release can be scoped
  to the booking that caused the reservation
- Host-set `blocked` rows carry no booking and are never auto-released
"""

from sqlalchemy import Column, Integer, String, Text, Date, ForeignKey, UniqueConstraint, CheckConstraint

from racestay.db.base import Base, TimestampMixin

AVAILABLE = "available"
RESERVED = "reserved"
BLOCKED = "blocked"


class AvailabilityEntry(Base, TimestampMixin):
    __tablename__ = "property_availability"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=AVAILABLE)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("property_id", "date", name="uq_property_availability_date"),
        CheckConstraint(
            "status IN ('available', 'reserved', 'blocked')",
            name="check_availability_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<AvailabilityEntry(property={self.property_id}, date={self.date}, status={self.status})>"
