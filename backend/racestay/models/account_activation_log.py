"""
Audit trail of every change to users.is_active.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey

from racestay.db.base import Base, TimestampMixin

ACTOR_ADMIN = "admin"
ACTOR_SUBSCRIPTION = "subscription"
ACTOR_SYSTEM = "system"


class AccountActivationLog(Base, TimestampMixin):
    __tablename__ = "account_activation_log"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False)
    reason = Column(String(255), nullable=False)
    actor = Column(String(20), nullable=False)

    def __repr__(self) -> str:
        return f"<AccountActivationLog(user={self.user_id}, active={self.is_active}, actor={self.actor})>"
