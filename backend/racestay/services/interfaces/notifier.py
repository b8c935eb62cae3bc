"""
Notification collaborator interface.
Lets the settlement engine emit lifecycle events without knowing how (or
whether) they reach users.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable

from racestay.core.logging import get_logger
from racestay.core.metrics import notification_failures

logger = get_logger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    user_id: int
    booking_id: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class Notifier(ABC):
    """
    Interface for notification backends.

    Implementations:
    - DatabaseNotifier: Append to the notifications table (default)
    - RedisNotifier: Publish on a Redis pub/sub channel
    - LogNotifier: Structured log line only

    Delivery is fire-and-forget. Events are dispatched only after the
    transition that produced them has committed, and a failing backend must
    never undo that transition.
    """

    @abstractmethod
    async def send(self, events: list[NotificationEvent]) -> None:
        """
        Deliver a batch of events.

        Args:
            events: Events produced by one committed transition
        """
        pass

    async def dispatch(self, events: Iterable[NotificationEvent]) -> None:
        """Deliver events, logging and swallowing backend failures."""
        batch = list(events)
        if not batch:
            return
        try:
            await self.send(batch)
        except Exception as e:
            for event in batch:
                notification_failures.labels(kind=event.kind).inc()
            logger.error(
                "notification_dispatch_failed",
                backend=type(self).__name__,
                kinds=[event.kind for event in batch],
                error=str(e),
            )
