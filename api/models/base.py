import enum
from datetime import datetime, timezone
from typing import Type

from sqlalchemy import Enum
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    # naive UTC, comparable with what both postgres and sqlite hand back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def value_enum(enum_cls: Type[enum.Enum], name: str) -> Enum:
    """Enum column stored by value ("pending"), not by member name ("PENDING")."""
    return Enum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])
