"""Redis-backed cache tier for short code lookups.

The cache is an accelerator only: a miss returns ``None`` and every entry can
be rebuilt from the durable mapping. Driver failures raise ``CacheError`` so
callers can decide to degrade to the durable store.

Key Layout
==========
::
    url:<short_code>  ->  original URL   (TTL = time to expiry, or default)
"""

import datetime

import redis.asyncio as redis

from app.exceptions import CacheError
from app.helpers import handle_redis_errors

__all__ = ["CacheService"]


class CacheService:
    def __init__(self, client: redis.Redis, prefix: str = "url", default_ttl_seconds: int = 24 * 60 * 60):
        self._redis = client
        self._prefix = prefix
        self.default_ttl = datetime.timedelta(seconds=default_ttl_seconds)

    def key(self, short_code: str) -> str:
        return f"{self._prefix}:{short_code}"

    @handle_redis_errors(CacheError)
    async def get(self, short_code: str) -> str | None:
        return await self._redis.get(self.key(short_code))

    @handle_redis_errors(CacheError)
    async def set(self, short_code: str, original_url: str, ttl: datetime.timedelta | None = None) -> bool:
        """Cache ``original_url`` for ``ttl`` (default TTL when ``None``).

        Returns False without writing when the TTL has already run out.
        """
        ttl = self.default_ttl if ttl is None else ttl
        ttl_ms = int(ttl.total_seconds() * 1000)
        if ttl_ms <= 0:
            return False
        await self._redis.set(self.key(short_code), original_url, px=ttl_ms)
        return True

    @handle_redis_errors(CacheError)
    async def delete(self, short_code: str) -> None:
        await self._redis.delete(self.key(short_code))

    @handle_redis_errors(CacheError)
    async def ping(self) -> bool:
        return bool(await self._redis.ping())
