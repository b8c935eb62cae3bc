"""
Log-only notifier - no delivery.
"""

from racestay.core.logging import get_logger
from racestay.services.interfaces.notifier import Notifier, NotificationEvent

logger = get_logger(__name__)


class LogNotifier(Notifier):
    """
    Writes one structured log line per event.

    Use when:
    - Running locally without a notifications consumer
    - Delivery is handled by shipping logs elsewhere
    """

    async def send(self, events: list[NotificationEvent]) -> None:
        for event in events:
            logger.info(
                "notification",
                kind=event.kind,
                user_id=event.user_id,
                booking_id=event.booking_id,
                payload=event.payload,
            )
