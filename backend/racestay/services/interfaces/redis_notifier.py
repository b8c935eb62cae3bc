"""
Redis notifier - publishes events on a pub/sub channel.
"""

import json

from racestay.core.config import get_settings
from racestay.core.logging import get_logger
from racestay.services.cache_service import get_redis
from racestay.services.interfaces.notifier import Notifier, NotificationEvent

logger = get_logger(__name__)
settings = get_settings()


class RedisNotifier(Notifier):
    """
    Pushes events to subscribers of REDIS_EVENTS_CHANNEL.

    Use when:
    - Several consumers (email, push, in-app) fan out from one stream
    - At-most-once delivery is acceptable; pub/sub keeps no backlog
    """

    def __init__(self, channel: str | None = None):
        self.channel = channel or settings.REDIS_EVENTS_CHANNEL

    async def send(self, events: list[NotificationEvent]) -> None:
        client = await get_redis()
        if not client:
            logger.warning("notification_dropped_redis_unavailable", count=len(events))
            return
        for event in events:
            message = {
                "kind": event.kind,
                "user_id": event.user_id,
                "booking_id": event.booking_id,
                "payload": event.payload,
            }
            await client.publish(self.channel, json.dumps(message, default=str))
