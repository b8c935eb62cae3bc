"""
Idempotency ledger for subscription webhooks.

The unique `dedup_key` is claimed in the same transaction as the event's
effects; a replay fails the insert and is reported as already applied.
"""

from sqlalchemy import Column, Integer, String

from racestay.db.base import Base, TimestampMixin


class ProcessedWebhookEvent(Base, TimestampMixin):
    __tablename__ = "processed_webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    dedup_key = Column(String(255), nullable=False, unique=True)
    kind = Column(String(50), nullable=False)
    external_subscription_id = Column(String(255), nullable=True, index=True)
    external_event_id = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent(key={self.dedup_key})>"
