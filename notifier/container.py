"""Process-wide wiring of clients and services."""
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from sqlalchemy.engine import Engine

from notifier.cache.redis_cache import RedisCache
from notifier.config import Settings
from notifier.dapr.client import DaprRetryQueue
from notifier.db.config import create_db_engine
from notifier.providers.registry import ProviderRegistry, default_registry
from notifier.services.cleanup import ScheduledCleanup
from notifier.services.config_cache import ConfigCache
from notifier.services.idempotency_manager import IdempotencyManager
from notifier.services.notification_dispatcher import NotificationDispatcher
from notifier.services.notification_logs import NotificationLogStore
from notifier.services.queue_processor import QueueProcessor
from notifier.services.retry_scheduler import RetryScheduler
from notifier.services.template_engine import TemplateEngine


@dataclass
class ServiceContainer:
    settings: Settings
    engine: Engine
    cache: Any
    queue: Any
    providers: ProviderRegistry
    log_store: NotificationLogStore
    config_cache: ConfigCache
    template_engine: TemplateEngine
    idempotency: IdempotencyManager
    retry_scheduler: RetryScheduler
    dispatcher: NotificationDispatcher
    queue_processor: QueueProcessor
    cleanup: ScheduledCleanup
    http_client: Optional[httpx.AsyncClient] = None

    async def close(self):
        if self.http_client is not None:
            await self.http_client.aclose()
        if hasattr(self.cache, "close"):
            await self.cache.close()
        self.engine.dispose()


def build_container(
    settings: Settings,
    engine: Optional[Engine] = None,
    cache: Any = None,
    queue: Any = None,
    providers: Optional[ProviderRegistry] = None,
) -> ServiceContainer:
    """
    Construct every client once and inject it into the services.

    Args:
        settings: Runtime settings
        engine: Database engine (built from ``settings.database_url`` if omitted)
        cache: Async cache client (Redis at ``settings.redis_url`` if omitted)
        queue: Retry queue (Dapr pub/sub if omitted)
        providers: Channel providers (built-in HTTP providers if omitted)
    """
    engine = engine or create_db_engine(settings.database_url)
    cache = cache if cache is not None else RedisCache.from_url(settings.redis_url)
    queue = queue or DaprRetryQueue(settings.pubsub_name, settings.retry_topic, settings.dead_letter_topic)

    http_client = None
    if providers is None:
        http_client = httpx.AsyncClient(timeout=settings.send_timeout_seconds)
        providers = default_registry(http_client, settings.send_timeout_seconds)

    log_store = NotificationLogStore(engine)
    config_cache = ConfigCache(engine, cache, ttl=settings.config_cache_ttl)
    template_engine = TemplateEngine(engine, cache, ttl=settings.template_cache_ttl)
    idempotency = IdempotencyManager(engine, log_store, ttl_hours=settings.idempotency_ttl_hours)
    retry_scheduler = RetryScheduler(
        log_store, queue, intervals=settings.retry_intervals, max_retry_count=settings.max_retry_count
    )
    dispatcher = NotificationDispatcher(
        config_cache,
        template_engine,
        idempotency,
        retry_scheduler,
        log_store,
        providers,
        send_timeout=settings.send_timeout_seconds,
    )
    return ServiceContainer(
        settings=settings,
        engine=engine,
        cache=cache,
        queue=queue,
        providers=providers,
        log_store=log_store,
        config_cache=config_cache,
        template_engine=template_engine,
        idempotency=idempotency,
        retry_scheduler=retry_scheduler,
        dispatcher=dispatcher,
        queue_processor=QueueProcessor(log_store, dispatcher, retry_scheduler),
        cleanup=ScheduledCleanup(config_cache, log_store, idempotency, settings.log_retention_hours),
        http_client=http_client,
    )
