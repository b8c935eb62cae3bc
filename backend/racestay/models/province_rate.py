"""
Database-side override of the static province rate table.

Rows are keyed by the normalized province name (see services.rate_table).
A booking captures its cost at creation, so editing a rate never reprices
existing bookings.
"""

from sqlalchemy import Column, Integer, String, CheckConstraint

from racestay.db.base import Base, TimestampMixin


class ProvinceRate(Base, TimestampMixin):
    __tablename__ = "province_rates"

    province = Column(String(100), primary_key=True)
    points_per_night = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("points_per_night > 0", name="check_province_rate_positive"),
    )

    def __repr__(self) -> str:
        return f"<ProvinceRate(province={self.province}, points={self.points_per_night})>"
