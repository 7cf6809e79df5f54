"""Scheduled housekeeping: prunes old audit rows and expired idempotency keys."""
import time
from datetime import timedelta

from notifier.schemas.notification import CleanupResult
from notifier.services.config_cache import ConfigCache
from notifier.services.idempotency_manager import IdempotencyManager
from notifier.services.notification_logs import NotificationLogStore
from notifier.utils.logger import get_logger
from notifier.utils.time import utcnow

logger = get_logger(__name__)

RETENTION_CONFIG_KEY = "log_retention_hours"


class ScheduledCleanup:
    def __init__(
        self,
        config_cache: ConfigCache,
        log_store: NotificationLogStore,
        idempotency: IdempotencyManager,
        default_retention_hours: int = 72,
    ):
        self.config_cache = config_cache
        self.log_store = log_store
        self.idempotency = idempotency
        self.default_retention_hours = default_retention_hours

    async def retention_hours(self) -> int:
        """Retention window from system config, falling back to the default."""
        value = await self.config_cache.get_system_config(RETENTION_CONFIG_KEY)
        if value is None:
            return self.default_retention_hours
        try:
            hours = int(value)
        except ValueError:
            logger.warning("Invalid log retention setting, using default", value=value)
            return self.default_retention_hours
        return hours if hours > 0 else self.default_retention_hours

    async def execute_cleanup(self) -> CleanupResult:
        """Run every cleanup step. A failing step is reported in ``errors``, not raised."""
        started = time.perf_counter()
        result = CleanupResult(timestamp=utcnow())

        try:
            hours = await self.retention_hours()
            cutoff = utcnow() - timedelta(hours=hours)
            result.cleaned_logs = self.log_store.delete_terminal_before(cutoff)
        except Exception as e:
            logger.error("Failed to clean up notification logs", error=str(e))
            result.errors.append(f"Failed to cleanup notification logs: {e}")

        try:
            result.cleaned_keys = await self.idempotency.cleanup_expired()
        except Exception as e:
            logger.error("Failed to clean up idempotency keys", error=str(e))
            result.errors.append(f"Failed to cleanup idempotency keys: {e}")

        result.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Scheduled cleanup completed",
            cleaned_logs=result.cleaned_logs,
            cleaned_keys=result.cleaned_keys,
            duration_ms=result.duration_ms,
            error_count=len(result.errors),
        )
        return result
