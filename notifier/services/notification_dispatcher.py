"""
Notification Dispatcher.

Turns one dispatch request into per-channel results. Channels without an
active config, or without template content, are skipped silently; every
channel that is attempted gets exactly one audit row and one result, and
one channel's failure never cancels another's send.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Union

from notifier.errors import NotificationError, classify_exception
from notifier.models.notification_log import NotificationLog, NotificationStatus
from notifier.providers.registry import ProviderRegistry
from notifier.schemas.channel_config import ChannelType, parse_channel_config
from notifier.schemas.notification import (
    NotificationResult,
    PreparedNotification,
    ResultStatus,
    SendNotificationRequest,
    parse_send_request,
)
from notifier.services.config_cache import ConfigCache
from notifier.services.idempotency_manager import IdempotencyManager
from notifier.services.notification_logs import NotificationLogStore, generate_message_id
from notifier.services.retry_scheduler import RetryScheduler
from notifier.services.template_engine import TemplateEngine
from notifier.utils.logger import get_logger
from notifier.utils.metrics import metrics_collector

logger = get_logger(__name__)


class NotificationDispatcher:
    """Orchestrates idempotency, config lookup, rendering and channel fan-out."""

    def __init__(
        self,
        config_cache: ConfigCache,
        template_engine: TemplateEngine,
        idempotency: IdempotencyManager,
        retry_scheduler: RetryScheduler,
        log_store: NotificationLogStore,
        providers: ProviderRegistry,
        send_timeout: float = 30,
    ):
        self.config_cache = config_cache
        self.template_engine = template_engine
        self.idempotency = idempotency
        self.retry_scheduler = retry_scheduler
        self.log_store = log_store
        self.providers = providers
        self.send_timeout = send_timeout

    @metrics_collector.time_operation("send_notification")
    async def send_notification(
        self, request: Union[SendNotificationRequest, Dict[str, Any]]
    ) -> List[NotificationResult]:
        """
        Dispatch one request to every configured channel.

        Args:
            request: Validated dispatch request, or a raw request body

        Returns:
            One result per channel actually attempted

        Raises:
            ValidationError: the body, the template key or a channel is invalid
        """
        if not isinstance(request, SendNotificationRequest):
            request = parse_send_request(request)

        key = request.idempotency_key
        if key:
            duplicate = await self.idempotency.check_duplicate(key, request.user_id)
            if duplicate.is_duplicate:
                metrics_collector.duplicate_request()
                return duplicate.results or []

            if not await self.idempotency.claim(key, request.user_id):
                # Another request with the same key won the insert
                metrics_collector.duplicate_request()
                duplicate = await self.idempotency.check_duplicate(key, request.user_id)
                return duplicate.results or []

        try:
            results = await self._dispatch(request)
        except Exception:
            if key:
                await self.idempotency.release(key, request.user_id)
            raise

        if key:
            await self.idempotency.record(key, request.user_id, [r.message_id for r in results])
        return results

    async def _dispatch(self, request: SendNotificationRequest) -> List[NotificationResult]:
        prepared = await self._prepare(request)
        if not prepared:
            logger.info("No channels to dispatch", user_id=request.user_id,
                        requested_channels=[c.value for c in request.unique_channels()])
            return []

        outcomes = await asyncio.gather(
            *(self._dispatch_channel(item) for item in prepared),
            return_exceptions=True,
        )

        results: List[NotificationResult] = []
        for item, outcome in zip(prepared, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                results.append(self._record_unexpected_failure(item, outcome))
            else:
                results.append(outcome)

        logger.info(
            "Notification dispatched",
            user_id=request.user_id,
            channels=[r.channel_type.value for r in results],
            statuses=[r.status.value for r in results],
        )
        return results

    async def _prepare(self, request: SendNotificationRequest) -> List[PreparedNotification]:
        """Bind content to every channel that has an active config and something to send."""
        channels = [channel.value for channel in request.unique_channels()]
        configs = await self.config_cache.batch_get_user_configs(request.user_id, channels)
        active = [channel for channel in channels if channel in configs]
        if not active:
            return []

        if request.template_key:
            rendered = await self.template_engine.render_for_channels(
                request.template_key, active, request.variables or {}
            )
            contents = {channel: (r.subject, r.content) for channel, r in rendered.items()}
        else:
            custom = request.custom_content
            contents = {channel: (custom.subject, custom.content) for channel in active}

        prepared = []
        for channel in active:
            if channel not in contents:
                continue
            subject, content = contents[channel]
            prepared.append(PreparedNotification(
                user_id=request.user_id,
                channel_type=ChannelType(channel),
                config=configs[channel].config_data,
                content=content,
                subject=subject,
                template_key=request.template_key,
            ))
        return prepared

    async def send_prepared(self, prepared: PreparedNotification) -> Dict[str, Any]:
        """Single-channel send used for first attempts and queued retries.

        Raises:
            NotificationError: classified failure (timeouts and unknown errors are retryable)
        """
        channel = prepared.channel_type.value
        provider = self.providers.get(channel)
        config = parse_channel_config(channel, prepared.config)
        try:
            return await asyncio.wait_for(
                provider.send(config, prepared.content, prepared.subject),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError as e:
            raise NotificationError(
                f"Send timed out after {self.send_timeout}s", "TIMEOUT_ERROR", retryable=True
            ) from e
        except NotificationError:
            raise
        except Exception as e:
            raise classify_exception(e) from e

    async def _dispatch_channel(self, prepared: PreparedNotification) -> NotificationResult:
        log = self.log_store.create(prepared)
        try:
            return await self._send_logged(prepared, log)
        except Exception as e:
            return self._close_after_error(prepared, log, e)

    async def _send_logged(self, prepared: PreparedNotification, log: NotificationLog) -> NotificationResult:
        channel = prepared.channel_type.value
        result = NotificationResult(
            message_id=log.message_id,
            user_id=prepared.user_id,
            channel_type=prepared.channel_type,
            status=ResultStatus.SENT,
            log_id=log.id,
        )

        try:
            details = await self.send_prepared(prepared)
        except NotificationError as e:
            result.error = e.message
            if not e.retryable:
                self.log_store.mark_failed(log.id, e.message)
                metrics_collector.notification_failed(channel)
                logger.warning("Notification failed permanently", log_id=log.id, channel=channel,
                               code=e.code, error=e.message)
                result.status = ResultStatus.FAILED
                return result

            scheduled = await self.retry_scheduler.schedule_retry(log.id, 0, e.message)
            result.status = ResultStatus.RETRY if scheduled else ResultStatus.FAILED
            return result

        try:
            self.log_store.mark_sent(log.id)
        except Exception as e:
            logger.error("Failed to update notification success", log_id=log.id, error=str(e))
        metrics_collector.notification_sent(channel)
        result.details = details
        return result

    def _close_after_error(self, prepared: PreparedNotification, log: NotificationLog,
                           error: Exception) -> NotificationResult:
        """Fail the already-written row after a store or scheduling error; never adds a row."""
        message = str(error) or error.__class__.__name__
        logger.error("Channel dispatch failed after audit row was written", log_id=log.id,
                     channel=prepared.channel_type.value, error=message)
        try:
            self.log_store.mark_failed(log.id, message)
        except Exception as e:
            logger.error("Could not mark notification failed", log_id=log.id, error=str(e))
        metrics_collector.notification_failed(prepared.channel_type.value)
        return NotificationResult(
            message_id=log.message_id,
            user_id=prepared.user_id,
            channel_type=prepared.channel_type,
            status=ResultStatus.FAILED,
            error=message,
            log_id=log.id,
        )

    def _record_unexpected_failure(self, prepared: PreparedNotification, error: Exception) -> NotificationResult:
        """Report an attempt whose audit row could not be created.

        The error is retryable in kind, but a retry is keyed by the audit row,
        so with no row there is nothing to schedule and the attempt is reported
        as ``failed``. A failed row is still written if the store has recovered.
        """
        message_id = generate_message_id()
        message = str(error) or error.__class__.__name__
        logger.error("Channel dispatch failed", user_id=prepared.user_id,
                     channel=prepared.channel_type.value, error=message)
        log_id: Optional[int] = None
        try:
            log_id = self.log_store.create(
                prepared, message_id=message_id, status=NotificationStatus.FAILED, error=message
            ).id
        except NotificationError:
            logger.error("Could not write failure audit row", message_id=message_id)
        metrics_collector.notification_failed(prepared.channel_type.value)
        return NotificationResult(
            message_id=message_id,
            user_id=prepared.user_id,
            channel_type=prepared.channel_type,
            status=ResultStatus.FAILED,
            error=message,
            log_id=log_id,
        )

    def get_notification_results(self, message_ids: Sequence[str]) -> List[NotificationResult]:
        return self.log_store.get_results(list(message_ids))
