# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from benefit_flow.api.deps import AdminDep, require_self_or_admin
from benefit_flow.db import SessionDep
from benefit_flow.schemas.ledger import HoldListResponse, LedgerSnapshotResponse, SetLimitPayload
from benefit_flow.services import engine
from benefit_flow.services import ledger as ledger_service

employee_ledger_router = APIRouter(
    prefix="/employees/{employee_id}/ledgers",
    tags=["ledgers"],
)

employee_holds_router = APIRouter(
    prefix="/employees/{employee_id}/holds",
    tags=["ledgers"],
    dependencies=[Depends(require_self_or_admin)],
)


@employee_ledger_router.get(
    "/{benefit_category}",
    response_model=LedgerSnapshotResponse,
    dependencies=[Depends(require_self_or_admin)],
)
async def get_ledger(
    employee_id: uuid.UUID,
    benefit_category: str,
    session: SessionDep,
) -> LedgerSnapshotResponse:
    """Get the budget position for an employee and benefit category."""
    return await engine.get_ledger_snapshot(session, employee_id, benefit_category)


@employee_ledger_router.put("/{benefit_category}", response_model=LedgerSnapshotResponse)
async def set_ledger_limit(
    employee_id: uuid.UUID,
    benefit_category: str,
    payload: SetLimitPayload,
    session: SessionDep,
    auth: AdminDep,
) -> LedgerSnapshotResponse:
    """Set the total limit of a ledger (admin only)."""
    return await ledger_service.set_ledger_limit(session, employee_id, benefit_category, payload.total_limit)


@employee_holds_router.get("", response_model=HoldListResponse)
async def list_holds(
    employee_id: uuid.UUID,
    session: SessionDep,
    benefit_category: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> HoldListResponse:
    """List an employee's ledger holds, newest first."""
    return await ledger_service.list_holds(session, employee_id, benefit_category, offset, limit)
