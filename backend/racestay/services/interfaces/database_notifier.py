"""
Database notifier - appends events to the notifications table.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from racestay.models.notification import Notification
from racestay.services.interfaces.notifier import Notifier, NotificationEvent


class DatabaseNotifier(Notifier):
    """
    Outbox-style delivery: the notification service polls the table.

    Uses its own session so that a failing insert can never touch the
    caller's (already committed) transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def send(self, events: list[NotificationEvent]) -> None:
        async with self.session_factory() as session:
            session.add_all(
                Notification(
                    user_id=event.user_id,
                    kind=event.kind,
                    booking_id=event.booking_id,
                    payload=event.payload,
                )
                for event in events
            )
            await session.commit()
