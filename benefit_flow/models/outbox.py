# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field

from benefit_flow.models.base import UUIDBase, now_utc


class TransitionEvent(UUIDBase, table=True):
    """Outbox row written in the same transaction as the transition it describes."""

    __tablename__ = "transition_event"
    __table_args__ = (sa.Index("ix_transition_event_undelivered", "delivered_at", "occurred_at"),)

    request_id: uuid.UUID = Field(index=True)
    from_state: str = Field(max_length=50)
    to_state: str = Field(max_length=50)
    actor_id: uuid.UUID
    occurred_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
    )
    delivered_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    attempts: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
