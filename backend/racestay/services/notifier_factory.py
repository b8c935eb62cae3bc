"""
Notifier factory.
Configures which notification backend the services emit events to.
"""

from racestay.core.config import get_settings
from racestay.services.interfaces.notifier import Notifier, NotificationEvent
from racestay.services.interfaces.log_notifier import LogNotifier
from racestay.services.interfaces.database_notifier import DatabaseNotifier
from racestay.services.interfaces.redis_notifier import RedisNotifier

settings = get_settings()


def build_notifier(backend: str | None = None) -> Notifier:
    """
    Build the configured notifier.

    Selected by NOTIFIER_BACKEND:
    - database: DatabaseNotifier on the application session factory (default)
    - redis: RedisNotifier on REDIS_EVENTS_CHANNEL
    - log: LogNotifier
    """
    backend = backend or settings.NOTIFIER_BACKEND

    if backend == 'redis':
        return RedisNotifier()
    if backend == 'log':
        return LogNotifier()
    from racestay.db.session import SessionLocal
    return DatabaseNotifier(SessionLocal)


# Singleton instance
_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    """Get notifier singleton."""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier


def set_notifier(notifier: Notifier | None) -> None:
    """Replace the singleton (tests, alternative entry points). None resets it."""
    global _notifier
    _notifier = notifier


async def notify(events: list[NotificationEvent]) -> None:
    await get_notifier().dispatch(events)
