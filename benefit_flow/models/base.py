from __future__ import annotations

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    """Return the current UTC time."""
    return datetime.now(UTC)


def _utc_column(nullable: bool = False) -> dict:
    kwargs: dict = {"sa_type": sa.DateTime(timezone=True)}
    if not nullable:
        kwargs["sa_column_kwargs"] = {"server_default": sa.func.now()}
    return kwargs


class UUIDBase(SQLModel):
    """Base model with UUID primary key."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, sa_type=sa.Uuid)


class TimestampMixin(SQLModel):
    """Mixin that adds a created_at timestamp."""

    created_at: datetime = Field(default_factory=now_utc, **_utc_column())


class VersionedMixin(SQLModel):
    """Row version for compare-and-swap writes, bumped together with updated_at.

    Writers must go through ``UPDATE ... WHERE version = :expected`` and treat
    a zero rowcount as a lost race.
    """

    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
    updated_at: datetime = Field(default_factory=now_utc, **_utc_column())
