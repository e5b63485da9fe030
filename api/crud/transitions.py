from __future__ import annotations
import enum
import uuid
from typing import Any, Mapping

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from api.crud.errors import ConcurrentModification, InvalidTransition


class StateMachine:
    """Table of allowed transitions: action -> (source states, target state).

    A target of None means the row is removed (affiliate cancellation).
    """

    def __init__(self, entity: str, transitions: Mapping[str, tuple[frozenset, enum.Enum | None]]):
        self.entity = entity
        self.transitions = dict(transitions)

    def target(self, action: str, current: enum.Enum) -> enum.Enum | None:
        sources, target = self.transitions[action]
        if current not in sources:
            raise InvalidTransition(
                f"Cannot {action} {self.entity} in status '{current.value}'",
                action=action,
                status=current.value,
            )
        return target


async def compare_and_set(
    session: AsyncSession,
    model: Any,
    row_id: uuid.UUID,
    expected: enum.Enum,
    values: dict[str, Any],
    version: int | None = None,
    column: str = "status",
) -> None:
    """UPDATE ... WHERE id = :id AND status = :expected [AND version = :version].

    Zero affected rows means somebody else moved the row first.
    """
    stmt = update(model).where(model.id == row_id, getattr(model, column) == expected)
    if version is not None:
        stmt = stmt.where(model.version == version)
        values = {**values, "version": model.version + 1}
    stmt = stmt.values(**values).execution_options(synchronize_session=False)
    result = await session.execute(stmt)
    if result.rowcount != 1:
        await session.rollback()
        raise ConcurrentModification(
            f"{model.__tablename__} {row_id} changed while '{expected.value}' was being processed, retry with fresh state"
        )


async def compare_and_delete(
    session: AsyncSession,
    model: Any,
    row_id: uuid.UUID,
    expected: enum.Enum,
    version: int,
) -> None:
    stmt = (
        delete(model)
        .where(model.id == row_id, model.status == expected, model.version == version)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        await session.rollback()
        raise ConcurrentModification(f"{model.__tablename__} {row_id} changed before it could be removed, retry with fresh state")


async def bump_version(session: AsyncSession, model: Any, row_id: uuid.UUID, version: int) -> None:
    """Claim a row for the current transaction without changing its status."""
    stmt = (
        update(model)
        .where(model.id == row_id, model.version == version)
        .values(version=model.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        await session.rollback()
        raise ConcurrentModification(f"{model.__tablename__} {row_id} was modified concurrently, retry with fresh state")
