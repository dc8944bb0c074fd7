# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from benefit_flow.models.base import TimestampMixin, UUIDBase, VersionedMixin


class BenefitRequest(UUIDBase, TimestampMixin, VersionedMixin, table=True):
    """A financial request travelling through its resolved approval stages."""

    __tablename__ = "benefit_request"
    __table_args__ = (
        sa.Index("ix_request_state_category", "state", "category"),
        sa.UniqueConstraint("requester_id", "idempotency_key", name="uq_request_idempotency"),
        sa.CheckConstraint("amount_minor >= 0", name="ck_request_amount_non_negative"),
    )

    category: str = Field(max_length=50)
    benefit_category: str = Field(max_length=50)
    requester_id: uuid.UUID = Field(index=True)
    amount_minor: int = Field(sa_type=sa.BigInteger)
    payload_json: dict[str, Any] | None = Field(default=None, sa_type=sa.JSON)
    attachments_json: list[str] = Field(default_factory=list, sa_type=sa.JSON)
    stages_json: list[str] = Field(default_factory=list, sa_type=sa.JSON)
    state: str = Field(default="draft", max_length=50, index=True, sa_column_kwargs={"server_default": "draft"})
    revision_json: dict[str, Any] | None = Field(default=None, sa_type=sa.JSON)
    ledger_hold_id: uuid.UUID | None = None
    idempotency_key: str | None = Field(default=None, max_length=255)
    submitted_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    decided_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]


class RequestStageEvent(UUIDBase, TimestampMixin, table=True):
    """Append-only stage history entry. Rows are inserted, never updated."""

    __tablename__ = "request_stage_event"
    __table_args__ = (sa.UniqueConstraint("request_id", "seq", name="uq_stage_event_seq"),)

    request_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid, sa.ForeignKey("benefit_request.id", ondelete="CASCADE"), nullable=False, index=True
        ),
    )
    seq: int
    stage: str | None = Field(default=None, max_length=50)
    actor_id: uuid.UUID
    decision: str = Field(max_length=50)
    note: str | None = None
