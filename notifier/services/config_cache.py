"""
Config Cache.

Read-through cache over per-user channel configuration and system settings.
Cache failures never fail a read; only the persistent store is authoritative.
"""

import asyncio
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from notifier.errors import NotificationError
from notifier.models.system_config import SystemConfig
from notifier.models.user_config import UserConfig
from notifier.schemas.channel_config import SUPPORTED_CHANNELS
from notifier.schemas.notification import UserChannelConfig
from notifier.utils.logger import get_logger
from notifier.utils.time import utcnow

logger = get_logger(__name__)


def user_config_key(user_id: str, channel_type: str) -> str:
    return f"user_config:{user_id}:{channel_type}"


def system_config_key(config_key: str) -> str:
    return f"system_config:{config_key}"


class ConfigCache:
    """Read-through cache for user channel configs and system settings."""

    def __init__(self, engine: Engine, cache: Any, ttl: int = 300):
        """
        Initialize the config cache.

        Args:
            engine: SQLAlchemy engine for the persistent store
            cache: Async key/value client with get/set/delete (RedisCache)
            ttl: Seconds a cached entry stays valid
        """
        self.engine = engine
        self.cache = cache
        self.ttl = ttl

    async def _cache_get(self, key: str) -> Optional[Any]:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning("Cache read failed", cache_key=key, error=str(e))
            return None

    async def _cache_set(self, key: str, value: Any):
        try:
            await self.cache.set(key, value, ttl=self.ttl)
            logger.debug("Cache set", cache_key=key, ttl=self.ttl)
        except Exception as e:
            logger.error("Failed to set cache", cache_key=key, error=str(e))

    async def _cache_delete(self, key: str):
        try:
            await self.cache.delete(key)
            logger.debug("Cache deleted", cache_key=key)
        except Exception as e:
            logger.error("Failed to delete cache", cache_key=key, error=str(e))

    def _load_user_config(self, user_id: str, channel_type: str) -> Optional[UserChannelConfig]:
        statement = select(UserConfig).where(
            UserConfig.user_id == user_id,
            UserConfig.channel_type == channel_type,
            UserConfig.is_active == True,  # noqa: E712
        )
        try:
            with Session(self.engine) as session:
                row = session.exec(statement).first()
                return UserChannelConfig.model_validate(row) if row else None
        except SQLAlchemyError as e:
            logger.error("Failed to get user config", user_id=user_id, channel=channel_type, error=str(e))
            raise NotificationError("Failed to fetch user configuration", "DB_ERROR", retryable=True) from e

    async def get_user_config(self, user_id: str, channel_type: str) -> Optional[UserChannelConfig]:
        """Active config for (user, channel), or None when missing or inactive."""
        cache_key = user_config_key(user_id, channel_type)
        cached = await self._cache_get(cache_key)
        if cached:
            try:
                config = UserChannelConfig.model_validate(cached)
                logger.debug("User config cache hit", cache_key=cache_key)
                return config
            except ValueError:
                logger.warning("Discarding malformed cached user config", cache_key=cache_key)

        config = self._load_user_config(user_id, channel_type)
        if config is not None:
            await self._cache_set(cache_key, config.model_dump(mode="json"))
        return config

    async def batch_get_user_configs(self, user_id: str, channel_types: List[str]) -> Dict[str, UserChannelConfig]:
        """Resolve several channels for one user concurrently; absent channels are omitted."""
        configs = await asyncio.gather(*(self.get_user_config(user_id, channel) for channel in channel_types))
        return {channel: config for channel, config in zip(channel_types, configs) if config is not None}

    async def set_user_config(self, user_id: str, channel_type: str, config: UserChannelConfig):
        await self._cache_set(user_config_key(user_id, channel_type), config.model_dump(mode="json"))

    async def invalidate_user_config(self, user_id: str, channel_type: Optional[str] = None):
        """Evict one channel, or every known channel when ``channel_type`` is None."""
        channels = [channel_type] if channel_type else SUPPORTED_CHANNELS
        await asyncio.gather(*(self._cache_delete(user_config_key(user_id, channel)) for channel in channels))

    async def save_user_config(
        self,
        user_id: str,
        channel_type: str,
        config_data: Dict[str, Any],
        is_active: bool = True,
    ) -> UserChannelConfig:
        """Upsert the persisted config row, then refresh the cached copy."""
        with Session(self.engine) as session:
            row = session.exec(
                select(UserConfig).where(UserConfig.user_id == user_id, UserConfig.channel_type == channel_type)
            ).first()
            if row is None:
                row = UserConfig(user_id=user_id, channel_type=channel_type, config_data=config_data, is_active=is_active)
            else:
                row.config_data = config_data
                row.is_active = is_active
                row.updated_at = utcnow()
            session.add(row)
            session.commit()
            session.refresh(row)
            saved = UserChannelConfig.model_validate(row)

        if saved.is_active:
            await self.set_user_config(user_id, channel_type, saved)
        else:
            await self.invalidate_user_config(user_id, channel_type)
        return saved

    async def get_system_config(self, config_key: str) -> Optional[str]:
        cache_key = system_config_key(config_key)
        cached = await self._cache_get(cache_key)
        if cached is not None:
            logger.debug("System config cache hit", cache_key=cache_key)
            return str(cached)

        try:
            with Session(self.engine) as session:
                row = session.get(SystemConfig, config_key)
                value = row.config_value if row else None
        except SQLAlchemyError as e:
            logger.error("Failed to get system config", config_key=config_key, error=str(e))
            raise NotificationError("Failed to fetch system configuration", "DB_ERROR", retryable=True) from e

        if value is not None:
            await self._cache_set(cache_key, value)
        return value

    async def set_system_config(self, config_key: str, config_value: str):
        await self._cache_set(system_config_key(config_key), config_value)

    async def invalidate_system_config(self, config_key: str):
        await self._cache_delete(system_config_key(config_key))

    async def warmup_cache(self, user_id: str) -> int:
        """Load every active config of a user into the cache. Returns the count cached."""
        with Session(self.engine) as session:
            rows = session.exec(
                select(UserConfig).where(UserConfig.user_id == user_id, UserConfig.is_active == True)  # noqa: E712
            ).all()
            configs = [UserChannelConfig.model_validate(row) for row in rows]

        await asyncio.gather(*(self.set_user_config(user_id, c.channel_type, c) for c in configs))
        if configs:
            logger.info("Cache warmed up for user", user_id=user_id, config_count=len(configs))
        return len(configs)
