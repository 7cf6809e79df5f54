"""Tests for idempotency key handling."""

from datetime import timedelta

import pytest
from sqlmodel import Session

from notifier.models import IdempotencyKey
from notifier.schemas.channel_config import ChannelType
from notifier.schemas.notification import PreparedNotification, ResultStatus
from notifier.services.idempotency_manager import IdempotencyManager
from notifier.services.notification_logs import NotificationLogStore
from notifier.utils.time import utcnow


@pytest.fixture
def log_store(engine):
    return NotificationLogStore(engine)


@pytest.fixture
def idempotency(engine, log_store):
    return IdempotencyManager(engine, log_store, ttl_hours=24)


def _create_log(log_store, channel=ChannelType.WEBHOOK):
    return log_store.create(PreparedNotification(user_id="u1", channel_type=channel, config={}, content="hi"))


def _insert_expired(engine, key, user_id, message_ids=None):
    with Session(engine) as session:
        session.add(IdempotencyKey(
            idempotency_key=key,
            user_id=user_id,
            message_ids=message_ids or [],
            expires_at=utcnow() - timedelta(minutes=1),
        ))
        session.commit()


async def test_no_key_is_never_a_duplicate(idempotency):
    result = await idempotency.check_duplicate(None, "u1")
    assert not result.is_duplicate
    assert result.results is None


async def test_first_claim_wins(idempotency):
    assert await idempotency.claim("order-1", "u1")
    assert not await idempotency.claim("order-1", "u1")
    # Same key, different user is independent
    assert await idempotency.claim("order-1", "u2")


async def test_in_flight_claim_is_a_duplicate_without_results(idempotency):
    await idempotency.claim("order-1", "u1")

    result = await idempotency.check_duplicate("order-1", "u1")

    assert result.is_duplicate
    assert result.results == []


async def test_recorded_key_returns_live_results(idempotency, log_store):
    first = _create_log(log_store)
    second = _create_log(log_store, ChannelType.SLACK)
    await idempotency.claim("order-1", "u1")
    await idempotency.record("order-1", "u1", [first.message_id, second.message_id])
    log_store.mark_sent(first.id)

    result = await idempotency.check_duplicate("order-1", "u1")

    assert result.is_duplicate
    assert [r.message_id for r in result.results] == [first.message_id, second.message_id]
    assert result.results[0].status == ResultStatus.SENT
    assert result.results[1].status == ResultStatus.RETRY_SCHEDULED


async def test_record_without_claim_inserts(idempotency, log_store):
    log = _create_log(log_store)

    await idempotency.record("order-2", "u1", [log.message_id])

    assert idempotency.get_record("order-2", "u1").message_ids == [log.message_id]


async def test_expired_key_is_a_new_request(idempotency, engine):
    _insert_expired(engine, "order-1", "u1", ["msg_old"])

    assert not (await idempotency.check_duplicate("order-1", "u1")).is_duplicate
    assert await idempotency.claim("order-1", "u1")
    assert idempotency.get_record("order-1", "u1").message_ids is None


async def test_release_drops_only_in_flight_claims(idempotency):
    await idempotency.claim("a", "u1")
    await idempotency.claim("b", "u1")
    await idempotency.record("b", "u1", [])

    await idempotency.release("a", "u1")
    await idempotency.release("b", "u1")

    assert idempotency.get_record("a", "u1") is None
    assert idempotency.get_record("b", "u1") is not None


async def test_cleanup_expired_removes_only_expired(idempotency, engine):
    _insert_expired(engine, "old", "u1")
    await idempotency.claim("fresh", "u1")

    assert await idempotency.cleanup_expired() == 1
    assert idempotency.get_record("old", "u1") is None
    assert idempotency.get_record("fresh", "u1") is not None


async def test_extend_expiration(idempotency, engine):
    await idempotency.claim("k", "u1")
    before = idempotency.get_record("k", "u1").expires_at

    assert await idempotency.extend_expiration("k", "u1", 48)
    assert idempotency.get_record("k", "u1").expires_at > before

    _insert_expired(engine, "gone", "u1")
    assert not await idempotency.extend_expiration("gone", "u1", 48)


async def test_get_stats(idempotency, engine):
    _insert_expired(engine, "old", "u1")
    await idempotency.claim("fresh", "u1")

    assert idempotency.get_stats() == {"total_keys": 2, "expired_keys": 1, "active_keys": 1}
