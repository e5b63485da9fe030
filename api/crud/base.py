from __future__ import annotations
import logging
import uuid
from typing import Any, Protocol, TypeVar

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from api.crud.errors import NotFound

ModelT = TypeVar("ModelT")


class ViewCache(Protocol):
    async def get_view(self, user_id: Any) -> dict[str, Any] | None: ...
    async def set_view(self, user_id: Any, view: dict[str, Any]) -> None: ...
    async def invalidate(self, user_id: Any) -> int: ...


class CoreService:
    def __init__(self, session: AsyncSession, cache: ViewCache | None = None):
        self.session = session
        self.cache = cache

    async def _get_or_404(self, model: type[ModelT], row_id: uuid.UUID, label: str) -> ModelT:
        row = await self.session.get(model, row_id, populate_existing=True)
        if row is None:
            raise NotFound(f"{label} {row_id} not found")
        return row

    async def _invalidate(self, user_id: uuid.UUID) -> None:
        # runs after commit: the database already holds the truth, the cache only expires
        if self.cache is None:
            return
        try:
            await self.cache.invalidate(user_id)
        except RedisError as e:
            logging.error(f"Failed to invalidate affiliate view for user {user_id}: {e}")
