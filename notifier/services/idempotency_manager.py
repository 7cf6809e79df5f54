"""
Idempotency Manager.

Deduplicates dispatch requests by (idempotency key, user). The first request
to claim a key wins through an atomic conditional insert on the composite
primary key; later requests within the expiry window get the live results
of the original attempts.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from notifier.models.idempotency_key import IdempotencyKey
from notifier.schemas.notification import DuplicateCheckResult
from notifier.services.notification_logs import NotificationLogStore
from notifier.utils.logger import get_logger
from notifier.utils.time import utcnow

logger = get_logger(__name__)


class IdempotencyManager:
    """Detects and records duplicate dispatch requests."""

    def __init__(self, engine: Engine, log_store: NotificationLogStore, ttl_hours: int = 24):
        self.engine = engine
        self.log_store = log_store
        self.ttl_hours = ttl_hours

    def get_record(self, idempotency_key: str, user_id: str) -> Optional[IdempotencyKey]:
        with Session(self.engine) as session:
            return session.get(IdempotencyKey, (idempotency_key, user_id))

    def _get_unexpired(self, idempotency_key: str, user_id: str) -> Optional[IdempotencyKey]:
        statement = select(IdempotencyKey).where(
            IdempotencyKey.idempotency_key == idempotency_key,
            IdempotencyKey.user_id == user_id,
            IdempotencyKey.expires_at > utcnow(),
        )
        with Session(self.engine) as session:
            return session.exec(statement).first()

    async def check_duplicate(self, idempotency_key: Optional[str], user_id: str) -> DuplicateCheckResult:
        """Look up an unexpired record and resolve it to current attempt results.

        A record whose owning request is still dispatching counts as a
        duplicate with no results yet.
        """
        if not idempotency_key:
            return DuplicateCheckResult(is_duplicate=False)

        record = self._get_unexpired(idempotency_key, user_id)
        if record is None:
            return DuplicateCheckResult(is_duplicate=False)

        message_ids = record.message_ids or []
        results = self.log_store.get_results(message_ids)
        logger.info(
            "Duplicate request detected via idempotency key",
            idempotency_key=idempotency_key,
            user_id=user_id,
            message_ids=message_ids,
            in_flight=record.message_ids is None,
        )
        return DuplicateCheckResult(is_duplicate=True, results=results)

    def _insert(self, idempotency_key: str, user_id: str, message_ids: Optional[List[str]]) -> bool:
        record = IdempotencyKey(
            idempotency_key=idempotency_key,
            user_id=user_id,
            message_ids=message_ids,
            expires_at=utcnow() + timedelta(hours=self.ttl_hours),
        )
        try:
            with Session(self.engine) as session:
                session.add(record)
                session.commit()
            return True
        except IntegrityError:
            return False

    def _delete_if_expired(self, idempotency_key: str, user_id: str) -> bool:
        statement = delete(IdempotencyKey).where(
            IdempotencyKey.idempotency_key == idempotency_key,
            IdempotencyKey.user_id == user_id,
            IdempotencyKey.expires_at <= utcnow(),
        )
        with self.engine.begin() as connection:
            return connection.execute(statement).rowcount > 0

    async def claim(self, idempotency_key: str, user_id: str) -> bool:
        """Atomically reserve a key for this request. False means another request owns it.

        An expired record under the same key is removed and the insert retried once.
        """
        if self._insert(idempotency_key, user_id, None):
            return True
        if self._delete_if_expired(idempotency_key, user_id):
            return self._insert(idempotency_key, user_id, None)
        return False

    async def record(self, idempotency_key: str, user_id: str, message_ids: List[str]):
        """Attach the produced message ids to the key, inserting the record if needed."""
        try:
            statement = (
                update(IdempotencyKey)
                .where(IdempotencyKey.idempotency_key == idempotency_key, IdempotencyKey.user_id == user_id)
                .values(message_ids=message_ids)
            )
            with self.engine.begin() as connection:
                updated = connection.execute(statement).rowcount
            if not updated:
                self._insert(idempotency_key, user_id, message_ids)
            logger.debug(
                "Idempotency key recorded",
                idempotency_key=idempotency_key,
                user_id=user_id,
                message_count=len(message_ids),
            )
        except SQLAlchemyError as e:
            logger.error("Failed to record idempotency key", idempotency_key=idempotency_key,
                         user_id=user_id, error=str(e))

    async def release(self, idempotency_key: str, user_id: str):
        """Drop a claim whose request failed before producing any attempt."""
        statement = delete(IdempotencyKey).where(
            IdempotencyKey.idempotency_key == idempotency_key,
            IdempotencyKey.user_id == user_id,
            IdempotencyKey.message_ids.is_(None),
        )
        try:
            with self.engine.begin() as connection:
                connection.execute(statement)
        except SQLAlchemyError as e:
            logger.error("Failed to release idempotency key", idempotency_key=idempotency_key,
                         user_id=user_id, error=str(e))

    async def cleanup_expired(self) -> int:
        """Delete every expired record. Returns the number removed."""
        statement = delete(IdempotencyKey).where(IdempotencyKey.expires_at <= utcnow())
        with self.engine.begin() as connection:
            deleted = connection.execute(statement).rowcount
        if deleted:
            logger.info("Cleaned up expired idempotency keys", deleted_count=deleted)
        return deleted

    async def extend_expiration(self, idempotency_key: str, user_id: str, additional_hours: int) -> bool:
        """Push back the expiry of an unexpired record. False if none matched."""
        now = utcnow()
        statement = (
            update(IdempotencyKey)
            .where(
                IdempotencyKey.idempotency_key == idempotency_key,
                IdempotencyKey.user_id == user_id,
                IdempotencyKey.expires_at > now,
            )
            .values(expires_at=now + timedelta(hours=additional_hours))
        )
        with self.engine.begin() as connection:
            return connection.execute(statement).rowcount > 0

    def get_stats(self) -> Dict[str, Any]:
        now = utcnow()
        with Session(self.engine) as session:
            total = session.exec(select(func.count()).select_from(IdempotencyKey)).one()
            expired = session.exec(
                select(func.count()).select_from(IdempotencyKey).where(IdempotencyKey.expires_at <= now)
            ).one()
        return {"total_keys": total, "expired_keys": expired, "active_keys": total - expired}
