# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from benefit_flow.models.enums import HoldState

# ---------------------------------------------------------------------------
# Ledger response schemas
# ---------------------------------------------------------------------------


class LedgerSnapshotResponse(BaseModel):
    """Budget position for one employee and benefit category."""

    employee_id: uuid.UUID
    benefit_category: str
    total_limit: Decimal
    committed: Decimal
    reserved: Decimal
    available: Decimal
    version: int
    updated_at: datetime | None  # None until the ledger row is first written


class HoldResponse(BaseModel):
    """A single ledger hold."""

    id: uuid.UUID
    request_id: uuid.UUID
    employee_id: uuid.UUID
    benefit_category: str
    amount: Decimal
    state: HoldState
    created_at: datetime
    resolved_at: datetime | None


class HoldListResponse(BaseModel):
    """Paginated ledger holds."""

    items: list[HoldResponse]
    total: int


# ---------------------------------------------------------------------------
# Administration payloads
# ---------------------------------------------------------------------------


class SetLimitPayload(BaseModel):
    """Request body for setting an employee's budget limit."""

    total_limit: Decimal = Field(ge=0, max_digits=14, decimal_places=2)
