"""
Notification Log Store.

Persistence of NotificationLog audit rows. Every state transition is a
conditional UPDATE guarded on the row still being open, so ``sent`` and
``failed`` stay terminal under concurrent or redelivered retries.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from notifier.errors import NotificationError
from notifier.models.notification_log import OPEN_STATUSES, NotificationLog, NotificationStatus
from notifier.models.user_config import UserConfig
from notifier.schemas.notification import NotificationResult, PreparedNotification, ResultStatus
from notifier.utils.logger import get_logger
from notifier.utils.time import utcnow

logger = get_logger(__name__)

TERMINAL_STATUSES = (NotificationStatus.SENT.value, NotificationStatus.FAILED.value)

# Pending rows are still in flight and are reported like a scheduled retry
_RESULT_STATUS = {
    NotificationStatus.SENT.value: ResultStatus.SENT,
    NotificationStatus.FAILED.value: ResultStatus.FAILED,
    NotificationStatus.RETRY.value: ResultStatus.RETRY_SCHEDULED,
    NotificationStatus.PENDING.value: ResultStatus.RETRY_SCHEDULED,
}


def generate_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


class NotificationLogStore:
    """Reads and transitions notification audit rows."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def create(
        self,
        prepared: PreparedNotification,
        message_id: Optional[str] = None,
        status: NotificationStatus = NotificationStatus.PENDING,
        error: Optional[str] = None,
    ) -> NotificationLog:
        """Insert the audit row for a new channel attempt.

        Raises:
            NotificationError: the row could not be written (retryable DB_ERROR)
        """
        log = NotificationLog(
            message_id=message_id or generate_message_id(),
            user_id=prepared.user_id,
            channel_type=prepared.channel_type.value,
            template_key=prepared.template_key,
            subject=prepared.subject,
            content=prepared.content,
            status=status.value,
            retry_count=0,
            error=error,
        )
        try:
            with Session(self.engine) as session:
                session.add(log)
                session.commit()
                session.refresh(log)
                return log
        except SQLAlchemyError as e:
            logger.error("Failed to write notification log", user_id=prepared.user_id,
                         channel=prepared.channel_type.value, error=str(e))
            raise NotificationError("Failed to persist notification attempt", "DB_ERROR", retryable=True) from e

    def get(self, log_id: int) -> Optional[NotificationLog]:
        with Session(self.engine) as session:
            return session.get(NotificationLog, log_id)

    def _transition(self, log_id: int, values: Dict, extra_conditions=()) -> bool:
        statement = (
            update(NotificationLog)
            .where(NotificationLog.id == log_id, NotificationLog.status.in_(OPEN_STATUSES), *extra_conditions)
            .values(**values)
        )
        with self.engine.begin() as connection:
            result = connection.execute(statement)
        return result.rowcount > 0

    def mark_sent(self, log_id: int) -> bool:
        """Transition an open row to ``sent``. Returns False if it was already terminal."""
        return self._transition(log_id, {
            "status": NotificationStatus.SENT.value,
            "error": None,
            "sent_at": utcnow(),
        })

    def mark_failed(self, log_id: int, error: str) -> bool:
        """Transition an open row to ``failed``. Returns False if it was already terminal."""
        return self._transition(log_id, {"status": NotificationStatus.FAILED.value, "error": error})

    def mark_retry(self, log_id: int, retry_count: int, error: str) -> bool:
        """Record a scheduled retry; retry_count may only move forward."""
        return self._transition(
            log_id,
            {"status": NotificationStatus.RETRY.value, "retry_count": retry_count, "error": error},
            extra_conditions=(NotificationLog.retry_count < retry_count,),
        )

    def mark_dead_lettered(self, log_id: int, error: str) -> bool:
        """Final bookkeeping for a dead-lettered row; never touches a sent row."""
        statement = (
            update(NotificationLog)
            .where(NotificationLog.id == log_id, NotificationLog.status != NotificationStatus.SENT.value)
            .values(status=NotificationStatus.FAILED.value, error=error)
        )
        with self.engine.begin() as connection:
            result = connection.execute(statement)
        return result.rowcount > 0

    def get_with_active_config(self, log_id: int) -> Optional[Tuple[NotificationLog, UserConfig]]:
        """Load a row joined with the user's *current* active config for its channel."""
        statement = (
            select(NotificationLog, UserConfig)
            .join(
                UserConfig,
                (UserConfig.user_id == NotificationLog.user_id)
                & (UserConfig.channel_type == NotificationLog.channel_type),
            )
            .where(NotificationLog.id == log_id, UserConfig.is_active == True)  # noqa: E712
            .limit(1)
        )
        with Session(self.engine) as session:
            row = session.exec(statement).first()
            if row is None:
                return None
            log, config = row
            return log, config

    def get_results(self, message_ids: List[str]) -> List[NotificationResult]:
        """Current status of the given attempts, as caller-facing results."""
        if not message_ids:
            return []
        with Session(self.engine) as session:
            logs = session.exec(select(NotificationLog).where(NotificationLog.message_id.in_(message_ids))).all()
        order = {message_id: index for index, message_id in enumerate(message_ids)}
        results = []
        for log in sorted(logs, key=lambda item: order.get(item.message_id, 0)):
            status = _RESULT_STATUS.get(log.status, ResultStatus.RETRY_SCHEDULED)
            results.append(NotificationResult(
                message_id=log.message_id,
                user_id=log.user_id,
                channel_type=log.channel_type,
                status=status,
                error=log.error,
                log_id=log.id,
            ))
        return results

    def count(self, *conditions) -> int:
        with Session(self.engine) as session:
            return session.exec(select(func.count()).select_from(NotificationLog).where(*conditions)).one()

    def delete_terminal_before(self, cutoff: datetime) -> int:
        """Delete sent/failed rows created before ``cutoff``."""
        statement = delete(NotificationLog).where(
            NotificationLog.created_at <= cutoff,
            NotificationLog.status.in_(TERMINAL_STATUSES),
        )
        with self.engine.begin() as connection:
            result = connection.execute(statement)
        return result.rowcount
