"""
Host-owned accommodation offered to travelling runners.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, CheckConstraint

from racestay.db.base import Base, TimestampMixin


class Property(Base, TimestampMixin):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    locality = Column(String(255), nullable=True)
    province = Column(String(100), nullable=True)
    max_guests = Column(Integer, nullable=False, default=1)
    cancellation_policy = Column(String(20), nullable=False, default="moderate")
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("max_guests > 0", name="check_property_max_guests_positive"),
        CheckConstraint(
            "cancellation_policy IN ('flexible', 'moderate', 'strict')",
            name="check_property_cancellation_policy",
        ),
    )

    def __repr__(self) -> str:
        return f"<Property(id={self.id}, owner={self.owner_id}, province={self.province})>"
