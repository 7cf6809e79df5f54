"""Shared fixtures.

Every test gets a fresh in-memory SQLite database plus in-memory stand-ins
for the Redis cache, the Dapr retry queue and the channel providers.
"""

import json
from typing import Any, Dict, List, Optional

import pytest
from sqlmodel import Session

from notifier.config import Settings
from notifier.container import build_container
from notifier.db.config import create_db_engine
from notifier.db.init import init_db
from notifier.models import NotificationTemplate, TemplateContent, UserConfig
from notifier.providers.base_provider import ChannelProvider
from notifier.providers.registry import ProviderRegistry
from notifier.schemas.channel_config import SUPPORTED_CHANNELS
from notifier.utils.metrics import metrics_collector

CHANNEL_CONFIGS = {
    "webhook": {"webhook_url": "https://hooks.example.com/notify"},
    "slack": {"webhook_url": "https://hooks.slack.com/services/T000/B000/XXX"},
    "lark": {"webhook_url": "https://open.larksuite.com/open-apis/bot/v2/hook/abc"},
    "telegram": {"bot_token": "123456:ABC", "chat_id": "42"},
}


class FakeCache:
    """Dict-backed cache with the RedisCache interface; values go through JSON like Redis."""

    def __init__(self):
        self.storage: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}

    async def get(self, key):
        raw = self.storage.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key, value, ttl=None):
        self.storage[key] = json.dumps(value, default=str)
        self.ttls[key] = ttl

    async def delete(self, key):
        self.storage.pop(key, None)

    async def ping(self):
        return True

    async def close(self):
        pass


class BrokenCache:
    """Cache whose every call fails, as if Redis were down."""

    async def get(self, key):
        raise ConnectionError("redis unavailable")

    async def set(self, key, value, ttl=None):
        raise ConnectionError("redis unavailable")

    async def delete(self, key):
        raise ConnectionError("redis unavailable")

    async def ping(self):
        return False


class FakeQueue:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.retries: List[Any] = []
        self.dead_letters: List[Any] = []

    async def send_retry(self, message, delay_seconds):
        if self.fail:
            raise ConnectionError("queue unavailable")
        self.retries.append((message, delay_seconds))

    async def send_dead_letter(self, message):
        self.dead_letters.append(message)


class ScriptedProvider(ChannelProvider):
    """Provider that replays queued outcomes: an exception is raised, anything else returned."""

    def __init__(self, channel_type: str):
        self.channel_type = channel_type
        self.outcomes: List[Any] = []
        self.calls: List[Dict[str, Any]] = []

    def script(self, *outcomes):
        self.outcomes.extend(outcomes)

    async def send(self, config, content, subject=None):
        self.calls.append({"config": config, "content": content, "subject": subject})
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return {"delivered": True}


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics_collector.reset()
    yield
    metrics_collector.reset()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        max_retry_count=2,
        retry_intervals=[10, 30],
        send_timeout_seconds=5,
    )


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def providers():
    return ProviderRegistry([ScriptedProvider(channel) for channel in SUPPORTED_CHANNELS])


@pytest.fixture
def container(settings, engine, cache, queue, providers):
    return build_container(settings, engine=engine, cache=cache, queue=queue, providers=providers)


def add_user_config(engine, user_id: str, channel: str, config_data: Optional[Dict[str, Any]] = None,
                    is_active: bool = True) -> UserConfig:
    row = UserConfig(
        user_id=user_id,
        channel_type=channel,
        config_data=config_data if config_data is not None else CHANNEL_CONFIGS[channel],
        is_active=is_active,
    )
    with Session(engine) as session:
        session.add(row)
        session.commit()
        session.refresh(row)
    return row


def add_template(engine, template_key: str, contents: Dict[str, Any], is_active: bool = True):
    """Insert a template; ``contents`` maps channel -> (subject, content)."""
    with Session(engine) as session:
        session.add(NotificationTemplate(template_key=template_key, template_name=template_key, is_active=is_active))
        session.commit()
        for channel, (subject, content) in contents.items():
            session.add(TemplateContent(
                template_key=template_key,
                channel_type=channel,
                subject_template=subject,
                content_template=content,
            ))
        session.commit()


@pytest.fixture
def make_user_config(engine):
    def factory(user_id, channel, config_data=None, is_active=True):
        return add_user_config(engine, user_id, channel, config_data, is_active)
    return factory


@pytest.fixture
def make_template(engine):
    def factory(template_key, contents, is_active=True):
        add_template(engine, template_key, contents, is_active)
    return factory


@pytest.fixture
def broken_cache():
    return BrokenCache()


@pytest.fixture
def failing_queue():
    return FakeQueue(fail=True)
