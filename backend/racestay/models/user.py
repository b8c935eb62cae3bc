"""
User account with its scalar points balance.

Key design decisions:
- `points_balance` is denormalized from points_transactions for cheap reads;
  only the points ledger writes it, always together with a transaction row
- No CHECK on points_balance >= 0: host penalties may legally drive it negative
- `ledger_frozen` halts ledger writes after an integrity violation until an
  operator has reviewed the account
- `is_active` is shared with admin tooling and the subscription handler;
  all writers go through services.account_service
"""

from sqlalchemy import Column, Integer, String, Boolean

from racestay.db.base import Base, TimestampMixin, UTCDateTime


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    points_balance = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    is_host = Column(Boolean, default=True, nullable=False)
    is_guest = Column(Boolean, default=True, nullable=False)
    ledger_frozen = Column(Boolean, default=False, nullable=False)
    deactivated_at = Column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, points={self.points_balance})>"
