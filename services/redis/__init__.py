from __future__ import annotations
import json
import logging
import redis.asyncio as aioredis
from typing import Any, Optional
from config import ENV


class RedisClient:
    """Cache of affiliate views keyed by owning user id.

    Only ever filled by the projection layer and dropped by mutating services;
    nothing reads a cached value to make a decision.
    """

    def __init__(self, url: str | None = None, ttl: int | None = None):
        self.env = ENV()
        self.url = url or self.env.redis_url
        self.ttl = ttl or self.env.AFFILIATE_VIEW_TTL
        self.redis = aioredis.from_url(self.url, decode_responses=True)

    @staticmethod
    def _view_key(user_id: Any) -> str:
        return f"affiliate:view:{user_id}"

    async def get_view(self, user_id: Any) -> Optional[dict[str, Any]]:
        raw = await self.redis.get(self._view_key(user_id))
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logging.warning(f"Dropping unreadable cached affiliate view for user {user_id}")
            await self.redis.delete(self._view_key(user_id))
            return None

    async def set_view(self, user_id: Any, view: dict[str, Any]) -> None:
        await self.redis.set(self._view_key(user_id), json.dumps(view), ex=self.ttl)

    async def invalidate(self, user_id: Any) -> int:
        return await self.redis.delete(self._view_key(user_id))

    async def aclose(self) -> None:
        await self.redis.aclose()


_client: RedisClient | None = None


def get_view_cache() -> RedisClient:
    global _client
    if _client is None:
        _client = RedisClient()
    return _client
