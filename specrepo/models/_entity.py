"""Shared shape of every persisted record."""

import typing as t
import uuid
from datetime import UTC, datetime

from sqlmodel import Field, SQLModel

EMPTY_ID = uuid.UUID(int=0)


def utc_now() -> datetime:
    return datetime.now(UTC)


class Entity(SQLModel):
    """Base for all table models handled by a repository.

    Subclasses declare ``table=True``. A freshly constructed instance has
    ``id == EMPTY_ID``; insert paths assign a real identifier.
    """

    id: uuid.UUID = Field(default=EMPTY_ID, primary_key=True)
    created_at_utc: datetime | None = Field(default=None)
    last_modified_at_utc: datetime | None = Field(default=None)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at_utc: datetime | None = Field(default=None)

    @property
    def has_valid_id(self) -> bool:
        return self.id is not None and self.id != EMPTY_ID


SYSTEM_COLUMNS = frozenset(
    {"id", "created_at_utc", "last_modified_at_utc", "is_deleted", "deleted_at_utc"},
)

EntityT = t.TypeVar("EntityT", bound=Entity)
