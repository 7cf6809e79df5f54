"""Dispatch pipeline services."""

from .config_cache import ConfigCache
from .idempotency_manager import IdempotencyManager
from .notification_dispatcher import NotificationDispatcher
from .notification_logs import NotificationLogStore
from .queue_processor import ProcessOutcome, QueueProcessor
from .retry_scheduler import RetryScheduler
from .template_engine import TemplateEngine
from .cleanup import ScheduledCleanup

__all__ = [
    "ConfigCache",
    "IdempotencyManager",
    "NotificationDispatcher",
    "NotificationLogStore",
    "ProcessOutcome",
    "QueueProcessor",
    "RetryScheduler",
    "TemplateEngine",
    "ScheduledCleanup",
]
