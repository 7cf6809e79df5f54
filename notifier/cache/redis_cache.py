"""Redis-backed key/value cache used for config and template lookups."""
import json
from typing import Any, Optional

from redis.asyncio import Redis

from notifier.utils.logger import get_logger

logger = get_logger(__name__)


class RedisCache:
    """Thin JSON cache over an injected ``redis.asyncio.Redis`` client.

    Values are serialized with ``json.dumps`` on write and decoded on read.

    Example:
        cache = RedisCache.from_url("redis://localhost:6379/0")
        await cache.set("key", {"data": "value"}, ttl=300)
        value = await cache.get("key")
        await cache.delete("key")
        await cache.close()
    """

    def __init__(self, client: Redis, prefix: str = "notifier:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "notifier:") -> "RedisCache":
        """Create a cache with its own connection pool."""
        return cls(Redis.from_url(url, decode_responses=True, socket_timeout=2.0), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Get a value, or None if absent."""
        raw = await self.client.get(self._key(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        """Store a value with an optional TTL in seconds."""
        await self.client.set(self._key(key), json.dumps(value, default=str), ex=ttl)

    async def delete(self, key: str):
        await self.client.delete(self._key(key))

    async def ping(self) -> bool:
        """Return True if Redis answers."""
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning("Redis ping failed", error=str(e))
            return False

    async def close(self):
        await self.client.aclose()
