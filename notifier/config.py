"""Runtime configuration for the notification dispatch service."""
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

# Load environment variables but prioritize local development
load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _intervals_env(name: str, default: List[int]) -> List[int]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [int(part) for part in value.split(",") if part.strip()]


@dataclass
class Settings:
    """Settings for the dispatch core, read from the environment."""

    database_url: str = "sqlite:///./notifier_dev.db"
    redis_url: str = "redis://localhost:6379/0"
    environment: str = "development"
    log_level: str = "INFO"

    # Dapr pub/sub used as the retry and dead-letter queues
    pubsub_name: str = "notification-pubsub"
    retry_topic: str = "notification-retry"
    dead_letter_topic: str = "notification-dead-letter"

    max_retry_count: int = 2
    retry_intervals: List[int] = field(default_factory=lambda: [10, 30])
    send_timeout_seconds: int = 30

    config_cache_ttl: int = 300
    template_cache_ttl: int = 300
    idempotency_ttl_hours: int = 24
    log_retention_hours: int = 72

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            redis_url=os.getenv("REDIS_URL", defaults.redis_url),
            environment=os.getenv("ENVIRONMENT", defaults.environment),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            pubsub_name=os.getenv("DAPR_PUBSUB_NAME", defaults.pubsub_name),
            retry_topic=os.getenv("RETRY_TOPIC", defaults.retry_topic),
            dead_letter_topic=os.getenv("DEAD_LETTER_TOPIC", defaults.dead_letter_topic),
            max_retry_count=_int_env("MAX_RETRY_COUNT", defaults.max_retry_count),
            retry_intervals=_intervals_env("RETRY_INTERVALS", defaults.retry_intervals),
            send_timeout_seconds=_int_env("SEND_TIMEOUT_SECONDS", defaults.send_timeout_seconds),
            config_cache_ttl=_int_env("CONFIG_CACHE_TTL", defaults.config_cache_ttl),
            template_cache_ttl=_int_env("TEMPLATE_CACHE_TTL", defaults.template_cache_ttl),
            idempotency_ttl_hours=_int_env("IDEMPOTENCY_TTL_HOURS", defaults.idempotency_ttl_hours),
            log_retention_hours=_int_env("LOG_RETENTION_HOURS", defaults.log_retention_hours),
        )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")
