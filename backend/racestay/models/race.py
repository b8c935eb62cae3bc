"""
A race a host offers lodging for.

Key design decisions:
- `province` drives the points-per-night rate of every booking on the race
- `is_available_for_booking` is closed when a booking is accepted and
  re-opened when that booking is cancelled
- Index on (is_active, is_available_for_booking, race_date) for discovery
"""

from sqlalchemy import Column, Integer, String, Boolean, Date, ForeignKey, Index

from racestay.db.base import Base, TimestampMixin


class Race(Base, TimestampMixin):
    __tablename__ = "races"

    id = Column(Integer, primary_key=True, index=True)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    race_date = Column(Date, nullable=False)
    province = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_available_for_booking = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_races_bookable_date", "is_active", "is_available_for_booking", "race_date"),
    )

    def __repr__(self) -> str:
        return f"<Race(id={self.id}, name={self.name}, province={self.province})>"
