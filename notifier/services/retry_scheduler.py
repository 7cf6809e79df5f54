"""
Retry Scheduler.

Drives the per-attempt retry state machine:

    pending|retry --retryable failure, under max--> retry (retry_count + 1)
    pending|retry --max reached or enqueue failure--> failed (+ dead-letter copy)
    pending|retry --success--> sent

Delays come from a fixed backoff list indexed by the current retry count and
clamped to its last entry.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import case, func
from sqlmodel import Session, select

from notifier.models.notification_log import OPEN_STATUSES, NotificationLog, NotificationStatus
from notifier.schemas.notification import RetryMessage
from notifier.services.notification_logs import NotificationLogStore
from notifier.utils.logger import get_logger
from notifier.utils.metrics import metrics_collector
from notifier.utils.time import epoch_millis, utcnow

logger = get_logger(__name__)

NON_RETRYABLE_ERRORS = frozenset([
    "INVALID_REQUEST",
    "INVALID_USER_ID",
    "INVALID_CHANNELS",
    "INVALID_CHANNEL_TYPE",
    "INVALID_TEMPLATE_KEY",
    "INVALID_VARIABLES",
    "INVALID_CUSTOM_CONTENT",
    "INVALID_CONTENT",
    "INVALID_SUBJECT",
    "MISSING_CONTENT",
    "INVALID_IDEMPOTENCY_KEY",
    "INVALID_CONFIG",
    "MISSING_WEBHOOK_URL",
    "INVALID_WEBHOOK_URL",
    "MISSING_BOT_TOKEN",
    "MISSING_CHAT_ID",
    "UNSUPPORTED_CHANNEL",
    "MISSING_SIGNATURE",
    "INVALID_TIMESTAMP",
    "REQUEST_EXPIRED",
])


class RetryScheduler:
    """Schedules delayed retries and dead-letters exhausted attempts."""

    def __init__(
        self,
        log_store: NotificationLogStore,
        queue: Any,
        intervals: Sequence[int] = (10, 30),
        max_retry_count: int = 2,
    ):
        """
        Args:
            log_store: Audit row persistence
            queue: Delayed queue with async send_retry/send_dead_letter (DaprRetryQueue)
            intervals: Backoff seconds per retry count
            max_retry_count: Retries allowed before an attempt is dead-lettered
        """
        if not intervals:
            raise ValueError("At least one retry interval is required")
        self.log_store = log_store
        self.queue = queue
        self.intervals: List[int] = list(intervals)
        self.max_retry_count = max_retry_count

    def delay_for(self, retry_count: int) -> int:
        return self.intervals[min(retry_count, len(self.intervals) - 1)]

    def calculate_next_retry_time(self, retry_count: int) -> int:
        """Epoch milliseconds at which the next retry would become visible."""
        return epoch_millis(utcnow() + timedelta(seconds=self.delay_for(retry_count)))

    @staticmethod
    def is_retryable(error_code: Optional[str]) -> bool:
        return not error_code or error_code not in NON_RETRYABLE_ERRORS

    def get_retryable_notification(self, log_id: int) -> Optional[NotificationLog]:
        """The row if it is still open (pending or retry), else None."""
        log = self.log_store.get(log_id)
        if log is None or log.status not in OPEN_STATUSES:
            return None
        return log

    async def schedule_retry(self, log_id: int, current_retry_count: int, error_message: str) -> bool:
        """Schedule the next retry of an attempt.

        Returns True when a retry message was enqueued. False means the
        attempt is now (or already was) terminal.
        """
        log = self.get_retryable_notification(log_id)
        if log is None:
            logger.info("Skipping retry for closed notification", log_id=log_id)
            return False

        now = utcnow()
        if current_retry_count >= self.max_retry_count:
            self.log_store.mark_failed(log_id, error_message)
            metrics_collector.notification_failed(log.channel_type)
            await self._send_to_dead_letter(RetryMessage(
                log_id=log_id,
                retry_count=current_retry_count,
                scheduled_at=epoch_millis(now),
                expected_process_at=epoch_millis(now),
            ))
            logger.warning(
                "Max retries reached, notification failed",
                log_id=log_id,
                retry_count=current_retry_count,
                error=error_message,
            )
            return False

        delay = self.delay_for(current_retry_count)
        message = RetryMessage(
            log_id=log_id,
            retry_count=current_retry_count + 1,
            scheduled_at=epoch_millis(now),
            expected_process_at=epoch_millis(now + timedelta(seconds=delay)),
        )
        try:
            await self.queue.send_retry(message, delay_seconds=delay)
        except Exception as e:
            logger.error("Failed to schedule retry", log_id=log_id, error=str(e))
            self.log_store.mark_failed(log_id, f"Failed to schedule retry: {e}")
            metrics_collector.notification_failed(log.channel_type)
            return False

        try:
            self.log_store.mark_retry(log_id, current_retry_count + 1, error_message)
        except Exception as e:
            # The queued message carries a count the row never reached; close the row
            logger.error("Failed to record scheduled retry", log_id=log_id, error=str(e))
            self.log_store.mark_failed(log_id, f"Failed to record retry: {e}")
            metrics_collector.notification_failed(log.channel_type)
            return False

        metrics_collector.retry_scheduled()
        logger.info(
            "Retry scheduled",
            log_id=log_id,
            retry_count=message.retry_count,
            delay_seconds=delay,
            expected_process_at=message.expected_process_at,
        )
        return True

    async def _send_to_dead_letter(self, message: RetryMessage):
        try:
            await self.queue.send_dead_letter(message)
            metrics_collector.dead_lettered()
            logger.info("Message sent to dead letter queue", log_id=message.log_id)
        except Exception as e:
            logger.error("Failed to send to dead letter queue", log_id=message.log_id, error=str(e))

    def get_retry_stats(self, user_id: str) -> Dict[str, int]:
        statement = select(
            func.count(case((NotificationLog.retry_count > 0, 1))),
            func.count(case((
                (NotificationLog.status == NotificationStatus.FAILED.value)
                & (NotificationLog.retry_count >= self.max_retry_count),
                1,
            ))),
            func.count(case((NotificationLog.status == NotificationStatus.RETRY.value, 1))),
        ).where(NotificationLog.user_id == user_id)
        with Session(self.log_store.engine) as session:
            total, failed_after, pending = session.exec(statement).one()
        return {
            "total_retries": total or 0,
            "failed_after_retries": failed_after or 0,
            "pending_retries": pending or 0,
        }
