"""
Queue Processor.

Consumer side of the retry protocol. Delivery is at-least-once, so every
message is checked against the attempt's persisted state before resending.
"""

from datetime import timedelta
from enum import Enum
from typing import Dict

from notifier.errors import NotificationError
from notifier.models.notification_log import OPEN_STATUSES, NotificationLog, NotificationStatus
from notifier.schemas.channel_config import ChannelType
from notifier.schemas.notification import PreparedNotification, RetryMessage
from notifier.services.notification_dispatcher import NotificationDispatcher
from notifier.services.notification_logs import NotificationLogStore
from notifier.services.retry_scheduler import RetryScheduler
from notifier.utils.logger import get_logger
from notifier.utils.metrics import metrics_collector
from notifier.utils.time import utcnow

logger = get_logger(__name__)

DEAD_LETTER_ERROR = "Maximum retries exceeded - moved to dead-letter queue"


class ProcessOutcome(str, Enum):
    SENT = "sent"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    DROPPED = "dropped"
    SKIPPED = "skipped"


class QueueProcessor:
    """Handles delayed retry messages and dead-letter deliveries."""

    def __init__(
        self,
        log_store: NotificationLogStore,
        dispatcher: NotificationDispatcher,
        retry_scheduler: RetryScheduler,
    ):
        self.log_store = log_store
        self.dispatcher = dispatcher
        self.retry_scheduler = retry_scheduler

    async def process_retry(self, message: RetryMessage) -> ProcessOutcome:
        """
        Resend one attempt named by a retry message.

        The attempt is reloaded together with the user's current active config
        for its channel. A missing row or a deactivated config drops the
        message; a closed row or a redelivered older message is skipped.
        """
        loaded = self.log_store.get_with_active_config(message.log_id)
        if loaded is None:
            logger.warning("Notification or active config not found, dropping retry", log_id=message.log_id)
            return ProcessOutcome.DROPPED

        log, config = loaded
        if log.status not in OPEN_STATUSES or log.retry_count != message.retry_count:
            logger.info(
                "Skipping stale retry message",
                log_id=log.id,
                status=log.status,
                persisted_retry_count=log.retry_count,
                message_retry_count=message.retry_count,
            )
            return ProcessOutcome.SKIPPED

        prepared = PreparedNotification(
            user_id=log.user_id,
            channel_type=ChannelType(log.channel_type),
            config=config.config_data,
            content=log.content,
            subject=log.subject,
            template_key=log.template_key,
        )

        try:
            await self.dispatcher.send_prepared(prepared)
        except NotificationError as e:
            return await self._handle_failure(log, message, e)

        if self.log_store.mark_sent(log.id):
            metrics_collector.notification_sent(log.channel_type)
        logger.info("Retry succeeded", log_id=log.id, retry_count=message.retry_count)
        return ProcessOutcome.SENT

    async def _handle_failure(self, log: NotificationLog, message: RetryMessage, error: NotificationError) -> ProcessOutcome:
        if not error.retryable:
            self.log_store.mark_failed(log.id, error.message)
            metrics_collector.notification_failed(log.channel_type)
            logger.warning("Retry failed permanently", log_id=log.id, code=error.code, error=error.message)
            return ProcessOutcome.FAILED

        scheduled = await self.retry_scheduler.schedule_retry(log.id, message.retry_count, error.message)
        return ProcessOutcome.RETRY_SCHEDULED if scheduled else ProcessOutcome.FAILED

    async def process_dead_letter(self, message: RetryMessage):
        """Record the terminal outcome of an exhausted attempt. Never retries."""
        updated = self.log_store.mark_dead_lettered(message.log_id, DEAD_LETTER_ERROR)
        logger.error(
            "Notification moved to dead-letter queue",
            log_id=message.log_id,
            retry_count=message.retry_count,
            updated=updated,
        )

    def get_queue_stats(self) -> Dict[str, int]:
        """Retry backlog, dead-lettered count and sends in the last hour."""
        one_hour_ago = utcnow() - timedelta(hours=1)
        return {
            "retry_queue_size": self.log_store.count(NotificationLog.status == NotificationStatus.RETRY.value),
            "dlq_size": self.log_store.count(
                NotificationLog.status == NotificationStatus.FAILED.value,
                NotificationLog.retry_count >= self.retry_scheduler.max_retry_count,
            ),
            "processing_rate": self.log_store.count(NotificationLog.sent_at >= one_hour_ago),
        }
