"""Initial schema: requests, stage history, ledgers, holds, transition outbox.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "benefit_request",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("benefit_category", sa.String(length=50), nullable=False),
        sa.Column("requester_id", sa.Uuid(), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.Column("attachments_json", sa.JSON(), nullable=False),
        sa.Column("stages_json", sa.JSON(), nullable=False),
        sa.Column("state", sa.String(length=50), server_default="draft", nullable=False),
        sa.Column("revision_json", sa.JSON(), nullable=True),
        sa.Column("ledger_hold_id", sa.Uuid(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("requester_id", "idempotency_key", name="uq_request_idempotency"),
        sa.CheckConstraint("amount_minor >= 0", name="ck_request_amount_non_negative"),
    )
    op.create_index("ix_benefit_request_requester_id", "benefit_request", ["requester_id"])
    op.create_index("ix_benefit_request_state", "benefit_request", ["state"])
    op.create_index("ix_request_state_category", "benefit_request", ["state", "category"])

    op.create_table(
        "request_stage_event",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("stage", sa.String(length=50), nullable=True),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column("decision", sa.String(length=50), nullable=False),
        sa.Column("note", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["request_id"], ["benefit_request.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("request_id", "seq", name="uq_stage_event_seq"),
    )
    op.create_index("ix_request_stage_event_request_id", "request_stage_event", ["request_id"])

    op.create_table(
        "budget_ledger",
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("benefit_category", sa.String(length=50), nullable=False),
        sa.Column("total_limit_minor", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("committed_minor", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("reserved_minor", sa.BigInteger(), server_default="0", nullable=False),
        sa.PrimaryKeyConstraint("employee_id", "benefit_category"),
        sa.CheckConstraint(
            "total_limit_minor - committed_minor - reserved_minor >= 0",
            name="ck_ledger_available_non_negative",
        ),
        sa.CheckConstraint("committed_minor >= 0 AND reserved_minor >= 0", name="ck_ledger_amounts_non_negative"),
    )

    op.create_table(
        "ledger_hold",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("employee_id", sa.Uuid(), nullable=False),
        sa.Column("benefit_category", sa.String(length=50), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("state", sa.String(length=20), server_default="ACTIVE", nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["request_id"], ["benefit_request.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("request_id", name="uq_hold_request"),
    )
    op.create_index("ix_ledger_hold_request_id", "ledger_hold", ["request_id"])
    op.create_index("ix_hold_employee_category", "ledger_hold", ["employee_id", "benefit_category"])

    op.create_table(
        "transition_event",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("request_id", sa.Uuid(), nullable=False),
        sa.Column("from_state", sa.String(length=50), nullable=False),
        sa.Column("to_state", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_transition_event_request_id", "transition_event", ["request_id"])
    op.create_index("ix_transition_event_undelivered", "transition_event", ["delivered_at", "occurred_at"])


def downgrade() -> None:
    op.drop_table("transition_event")
    op.drop_table("ledger_hold")
    op.drop_table("budget_ledger")
    op.drop_table("request_stage_event")
    op.drop_table("benefit_request")
