"""SQLModel tables for the dispatch core."""
from notifier.models.user_config import UserConfig
from notifier.models.template import NotificationTemplate, TemplateContent
from notifier.models.notification_log import NotificationLog, NotificationStatus
from notifier.models.idempotency_key import IdempotencyKey
from notifier.models.system_config import SystemConfig

__all__ = [
    "UserConfig",
    "NotificationTemplate",
    "TemplateContent",
    "NotificationLog",
    "NotificationStatus",
    "IdempotencyKey",
    "SystemConfig",
]
