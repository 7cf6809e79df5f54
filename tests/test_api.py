"""Tests for the Dapr-facing consumer endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from notifier.main import app
from notifier.models.notification_log import NotificationStatus
from notifier.schemas.channel_config import ChannelType
from notifier.schemas.notification import PreparedNotification, RetryMessage
from notifier.services.queue_processor import DEAD_LETTER_ERROR


@pytest.fixture
def client(container):
    app.state.container = container
    yield TestClient(app)
    app.state.container = None


@pytest.fixture
def retrying_log(container, make_user_config):
    make_user_config("u1", "webhook")
    log = container.log_store.create(PreparedNotification(
        user_id="u1",
        channel_type=ChannelType.WEBHOOK,
        config={},
        content="hello",
    ))
    container.log_store.mark_retry(log.id, 1, "HTTP 503")
    return log


def _cloud_event(log_id, retry_count=1):
    message = RetryMessage(log_id=log_id, retry_count=retry_count, scheduled_at=0, expected_process_at=10_000)
    envelope = {"event_id": "e1", "type": "notification.retry", "data": message.model_dump()}
    return {"specversion": "1.0", "type": "com.dapr.event.sent", "data": json.dumps(envelope)}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["cache"] == "healthy"


def test_subscriptions(client):
    subscriptions = client.get("/dapr/subscribe").json()

    assert {s["route"] for s in subscriptions} == {"/events/retry", "/events/dead-letter"}
    assert all(s["pubsubname"] == "notification-pubsub" for s in subscriptions)


def test_retry_event_resends(client, container, retrying_log):
    response = client.post("/events/retry", json=_cloud_event(retrying_log.id))

    assert response.json() == {"status": "SUCCESS", "outcome": "sent"}
    assert container.log_store.get(retrying_log.id).status == NotificationStatus.SENT.value


def test_malformed_retry_event_is_dropped(client):
    response = client.post("/events/retry", json={"data": {"log_id": "not-a-number"}})
    assert response.json() == {"status": "DROP"}


def test_processing_error_asks_for_redelivery(client, container, retrying_log, monkeypatch):
    async def broken(message):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(container.queue_processor, "process_retry", broken)

    response = client.post("/events/retry", json=_cloud_event(retrying_log.id))

    assert response.json() == {"status": "RETRY"}


def test_dead_letter_event(client, container, retrying_log):
    response = client.post("/events/dead-letter", json=_cloud_event(retrying_log.id))

    assert response.json() == {"status": "SUCCESS"}
    log = container.log_store.get(retrying_log.id)
    assert log.status == NotificationStatus.FAILED.value
    assert log.error == DEAD_LETTER_ERROR


def test_scheduled_cleanup(client):
    body = client.post("/scheduled-cleanup").json()

    assert body["cleaned_logs"] == 0
    assert body["cleaned_keys"] == 0
    assert body["errors"] == []


def test_metrics_include_queue_stats(client, retrying_log):
    body = client.get("/metrics").json()

    assert body["queue"]["retry_queue_size"] == 1
    assert "notifications_sent_total" in body["counters"]
