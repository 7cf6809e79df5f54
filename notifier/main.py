"""
Queue consumer service for the notification dispatch core.

Dapr delivers retry and dead-letter messages here as CloudEvents, and the
cron binding triggers scheduled cleanup.
"""
from typing import Any, Dict

from fastapi import FastAPI, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import text

from notifier.config import Settings
from notifier.container import ServiceContainer, build_container
from notifier.dapr.client import unwrap_event
from notifier.db.init import init_db
from notifier.schemas.notification import RetryMessage
from notifier.utils.logger import configure_logging, get_logger
from notifier.utils.metrics import metrics_collector

logger = get_logger(__name__)

app = FastAPI(
    title="Notification Dispatch Consumer",
    description="Retry, dead-letter and housekeeping endpoints for the notification dispatch core",
    version="1.0.0",
)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


@app.on_event("startup")
async def startup_event():
    """Build the service container and make sure the tables exist."""
    if getattr(app.state, "container", None) is not None:
        return
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    container = build_container(settings)
    try:
        init_db(container.engine)
    except Exception as e:
        logger.error("Database initialization failed", error=str(e))
    app.state.container = container
    logger.info("Notification consumer started", environment=settings.environment)


@app.on_event("shutdown")
async def shutdown_event():
    container = getattr(app.state, "container", None)
    if container is not None:
        await container.close()


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    container = get_container(request)
    try:
        with container.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        database = "healthy"
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        database = "unhealthy"

    cache = "healthy"
    if hasattr(container.cache, "ping") and not await container.cache.ping():
        cache = "unhealthy"

    status = "healthy" if database == "healthy" else "unhealthy"
    return {"status": status, "database": database, "cache": cache, "version": "1.0.0"}


@app.get("/metrics")
async def metrics(request: Request):
    container = get_container(request)
    data = metrics_collector.get_metrics()
    data["queue"] = container.queue_processor.get_queue_stats()
    return data


@app.get("/dapr/subscribe")
async def subscribe(request: Request):
    """Dapr programmatic subscriptions."""
    settings = get_container(request).settings
    return [
        {"pubsubname": settings.pubsub_name, "topic": settings.retry_topic, "route": "/events/retry"},
        {"pubsubname": settings.pubsub_name, "topic": settings.dead_letter_topic, "route": "/events/dead-letter"},
    ]


def _parse_message(body: Dict[str, Any]) -> RetryMessage:
    return RetryMessage.model_validate(unwrap_event(body))


@app.post("/events/retry")
async def handle_retry_event(request: Request):
    """Process one delayed retry message.

    Malformed messages are dropped; infrastructure failures ask Dapr to redeliver.
    """
    container = get_container(request)
    try:
        message = _parse_message(await request.json())
    except (PydanticValidationError, ValueError) as e:
        logger.error("Dropping malformed retry message", error=str(e))
        return {"status": "DROP"}

    try:
        outcome = await container.queue_processor.process_retry(message)
    except Exception as e:
        logger.exception("Retry processing failed", log_id=message.log_id, error=str(e))
        return {"status": "RETRY"}

    logger.info("Retry message processed", log_id=message.log_id, outcome=outcome.value)
    return {"status": "SUCCESS", "outcome": outcome.value}


@app.post("/events/dead-letter")
async def handle_dead_letter_event(request: Request):
    container = get_container(request)
    try:
        message = _parse_message(await request.json())
    except (PydanticValidationError, ValueError) as e:
        logger.error("Dropping malformed dead-letter message", error=str(e))
        return {"status": "DROP"}

    try:
        await container.queue_processor.process_dead_letter(message)
    except Exception as e:
        logger.exception("Dead-letter processing failed", log_id=message.log_id, error=str(e))
        return {"status": "RETRY"}
    return {"status": "SUCCESS"}


@app.post("/scheduled-cleanup")
async def scheduled_cleanup(request: Request):
    """Cron binding trigger for housekeeping."""
    result = await get_container(request).cleanup.execute_cleanup()
    return result.model_dump(mode="json")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("notifier.main:app", host="0.0.0.0", port=8000)
