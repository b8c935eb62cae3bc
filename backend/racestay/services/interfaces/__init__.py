"""
Service interfaces for dependency inversion.
Allows swapping notification backends without changing business logic.
"""

from .notifier import Notifier, NotificationEvent
from .log_notifier import LogNotifier
from .database_notifier import DatabaseNotifier
from .redis_notifier import RedisNotifier

__all__ = ['Notifier', 'NotificationEvent', 'LogNotifier', 'DatabaseNotifier', 'RedisNotifier']
