# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field

from benefit_flow.models.base import TimestampMixin, UUIDBase, VersionedMixin
from benefit_flow.models.enums import HoldState


class BudgetLedger(VersionedMixin, table=True):
    """Per-employee, per-benefit-category budget row guarded by a CAS version."""

    __tablename__ = "budget_ledger"
    __table_args__ = (
        sa.CheckConstraint(
            "total_limit_minor - committed_minor - reserved_minor >= 0",
            name="ck_ledger_available_non_negative",
        ),
        sa.CheckConstraint(
            "committed_minor >= 0 AND reserved_minor >= 0",
            name="ck_ledger_amounts_non_negative",
        ),
    )

    employee_id: uuid.UUID = Field(primary_key=True)
    benefit_category: str = Field(primary_key=True, max_length=50)
    total_limit_minor: int = Field(default=0, sa_type=sa.BigInteger, sa_column_kwargs={"server_default": "0"})
    committed_minor: int = Field(default=0, sa_type=sa.BigInteger, sa_column_kwargs={"server_default": "0"})
    reserved_minor: int = Field(default=0, sa_type=sa.BigInteger, sa_column_kwargs={"server_default": "0"})

    @property
    def available_minor(self) -> int:
        return self.total_limit_minor - self.committed_minor - self.reserved_minor


class LedgerHold(UUIDBase, TimestampMixin, table=True):
    """Reservation of budget on behalf of exactly one request."""

    __tablename__ = "ledger_hold"
    __table_args__ = (
        sa.Index("ix_hold_employee_category", "employee_id", "benefit_category"),
        sa.UniqueConstraint("request_id", name="uq_hold_request"),
    )

    request_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid, sa.ForeignKey("benefit_request.id", ondelete="CASCADE"), nullable=False, index=True
        ),
    )
    employee_id: uuid.UUID
    benefit_category: str = Field(max_length=50)
    amount_minor: int = Field(sa_type=sa.BigInteger)
    state: str = Field(default=HoldState.ACTIVE, max_length=20, sa_column_kwargs={"server_default": "ACTIVE"})
    resolved_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
