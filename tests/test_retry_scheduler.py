"""Tests for retry scheduling and dead-lettering."""

import pytest
from sqlalchemy.exc import OperationalError

from notifier.models.notification_log import NotificationStatus
from notifier.schemas.channel_config import ChannelType
from notifier.schemas.notification import PreparedNotification
from notifier.services.notification_logs import NotificationLogStore
from notifier.services.retry_scheduler import RetryScheduler
from notifier.utils.metrics import metrics_collector
from notifier.utils.time import epoch_millis, utcnow


@pytest.fixture
def log_store(engine):
    return NotificationLogStore(engine)


@pytest.fixture
def scheduler(log_store, queue):
    return RetryScheduler(log_store, queue, intervals=[10, 30], max_retry_count=2)


@pytest.fixture
def log(log_store):
    return log_store.create(PreparedNotification(
        user_id="u1", channel_type=ChannelType.WEBHOOK, config={}, content="hello"
    ))


def test_delay_is_clamped_to_last_interval(scheduler):
    assert scheduler.delay_for(0) == 10
    assert scheduler.delay_for(1) == 30
    assert scheduler.delay_for(5) == 30


def test_requires_an_interval(log_store, queue):
    with pytest.raises(ValueError):
        RetryScheduler(log_store, queue, intervals=[])


def test_is_retryable():
    assert not RetryScheduler.is_retryable("INVALID_CONFIG")
    assert not RetryScheduler.is_retryable("UNSUPPORTED_CHANNEL")
    assert RetryScheduler.is_retryable("NETWORK_ERROR")
    assert RetryScheduler.is_retryable(None)


def test_calculate_next_retry_time(scheduler):
    now = epoch_millis(utcnow())
    next_time = scheduler.calculate_next_retry_time(0)
    assert now + 9_000 <= next_time <= now + 11_000


async def test_schedules_retry_under_max(scheduler, log_store, queue, log):
    assert await scheduler.schedule_retry(log.id, 0, "HTTP 503")

    stored = log_store.get(log.id)
    assert stored.status == NotificationStatus.RETRY.value
    assert stored.retry_count == 1
    assert stored.error == "HTTP 503"

    message, delay = queue.retries[0]
    assert message.log_id == log.id
    assert message.retry_count == 1
    assert delay == 10
    assert message.expected_process_at - message.scheduled_at == 10_000
    assert metrics_collector.get_metrics()["counters"]["retries_scheduled_total"] == 1


async def test_second_retry_uses_longer_delay(scheduler, queue, log):
    await scheduler.schedule_retry(log.id, 0, "boom")
    await scheduler.schedule_retry(log.id, 1, "boom")

    assert [(m.retry_count, d) for m, d in queue.retries] == [(1, 10), (2, 30)]


async def test_max_reached_fails_and_dead_letters(scheduler, log_store, queue, log):
    assert not await scheduler.schedule_retry(log.id, 2, "still down")

    stored = log_store.get(log.id)
    assert stored.status == NotificationStatus.FAILED.value
    assert stored.error == "still down"
    assert queue.retries == []
    assert len(queue.dead_letters) == 1
    assert queue.dead_letters[0].log_id == log.id
    assert metrics_collector.get_metrics()["counters"]["dead_letter_total"] == 1


async def test_enqueue_failure_marks_failed(log_store, failing_queue, log):
    scheduler = RetryScheduler(log_store, failing_queue)

    assert not await scheduler.schedule_retry(log.id, 0, "timeout")

    stored = log_store.get(log.id)
    assert stored.status == NotificationStatus.FAILED.value
    assert stored.error == "Failed to schedule retry: queue unavailable"
    assert stored.retry_count == 0


async def test_retry_bookkeeping_failure_closes_the_row(scheduler, log_store, queue, log, monkeypatch):
    def failing_mark_retry(*args, **kwargs):
        raise OperationalError("UPDATE notification_logs", {}, Exception("database is locked"))

    monkeypatch.setattr(log_store, "mark_retry", failing_mark_retry)

    assert not await scheduler.schedule_retry(log.id, 0, "HTTP 503")

    stored = log_store.get(log.id)
    assert stored.status == NotificationStatus.FAILED.value
    assert stored.error.startswith("Failed to record retry:")
    assert len(queue.retries) == 1


async def test_terminal_row_is_left_alone(scheduler, log_store, queue, log):
    log_store.mark_sent(log.id)

    assert not await scheduler.schedule_retry(log.id, 0, "late failure")

    stored = log_store.get(log.id)
    assert stored.status == NotificationStatus.SENT.value
    assert stored.sent_at is not None
    assert queue.retries == []
    assert queue.dead_letters == []


async def test_unknown_row_is_not_scheduled(scheduler, queue):
    assert not await scheduler.schedule_retry(9999, 0, "boom")
    assert queue.retries == []


async def test_get_retryable_notification(scheduler, log_store, log):
    assert scheduler.get_retryable_notification(log.id).id == log.id
    log_store.mark_failed(log.id, "permanent")
    assert scheduler.get_retryable_notification(log.id) is None


async def test_get_retry_stats(scheduler, log_store, log):
    other = log_store.create(PreparedNotification(
        user_id="u1", channel_type=ChannelType.SLACK, config={}, content="hello"
    ))
    await scheduler.schedule_retry(log.id, 0, "boom")
    await scheduler.schedule_retry(other.id, 0, "boom")
    await scheduler.schedule_retry(other.id, 1, "boom")
    await scheduler.schedule_retry(other.id, 2, "boom")

    assert scheduler.get_retry_stats("u1") == {
        "total_retries": 2,
        "failed_after_retries": 1,
        "pending_retries": 1,
    }
    assert scheduler.get_retry_stats("nobody") == {
        "total_retries": 0,
        "failed_after_retries": 0,
        "pending_retries": 0,
    }
