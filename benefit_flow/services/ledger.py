"""Budget ledger store: reserve, commit and release holds against a versioned row.

Every write to a ``BudgetLedger`` row is a compare-and-swap on its
``version`` column. A writer whose CAS misses gets ``LedgerOutcome.CONFLICT``
and must roll back and retry from a fresh read; nothing here ever
blind-writes a balance. Hold state changes are guarded the same way, on
``state = ACTIVE``, so a hold is committed or released exactly once.
"""

from __future__ import annotations

import enum
import logging
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from benefit_flow.config import get_settings
from benefit_flow.exceptions import AppError
from benefit_flow.models.base import now_utc
from benefit_flow.models.enums import HoldState
from benefit_flow.models.ledger import BudgetLedger, LedgerHold
from benefit_flow.schemas.ledger import HoldListResponse, HoldResponse, LedgerSnapshotResponse
from benefit_flow.services.money import from_minor, to_minor

if TYPE_CHECKING:
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from benefit_flow.config import Settings

logger = logging.getLogger(__name__)


class LedgerOutcome(enum.StrEnum):
    """Result of a single ledger write attempt."""

    APPLIED = "APPLIED"
    NOOP = "NOOP"
    INSUFFICIENT = "INSUFFICIENT"
    UNFUNDED = "UNFUNDED"
    CONFLICT = "CONFLICT"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def default_limit_minor(benefit_category: str, settings: Settings | None = None) -> int:
    """Configured starting limit for a benefit category, 0 when none is configured."""
    settings = settings or get_settings()
    limit = settings.default_benefit_limits.get(benefit_category)
    return to_minor(limit) if limit is not None else 0


def _build_snapshot_response(ledger: BudgetLedger, updated: bool = True) -> LedgerSnapshotResponse:
    return LedgerSnapshotResponse(
        employee_id=ledger.employee_id,
        benefit_category=ledger.benefit_category,
        total_limit=from_minor(ledger.total_limit_minor),
        committed=from_minor(ledger.committed_minor),
        reserved=from_minor(ledger.reserved_minor),
        available=from_minor(ledger.available_minor),
        version=ledger.version,
        updated_at=ledger.updated_at if updated else None,
    )


def _build_hold_response(hold: LedgerHold) -> HoldResponse:
    return HoldResponse(
        id=hold.id,
        request_id=hold.request_id,
        employee_id=hold.employee_id,
        benefit_category=hold.benefit_category,
        amount=from_minor(hold.amount_minor),
        state=HoldState(hold.state),
        created_at=hold.created_at,
        resolved_at=hold.resolved_at,
    )


async def get_ledger(
    session: AsyncSession,
    employee_id: uuid.UUID,
    benefit_category: str,
) -> BudgetLedger | None:
    """Fresh read of a ledger row, bypassing any stale identity-map copy."""
    result = await session.execute(
        select(BudgetLedger)
        .where(
            col(BudgetLedger.employee_id) == employee_id,
            col(BudgetLedger.benefit_category) == benefit_category,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_ledger(
    session: AsyncSession,
    employee_id: uuid.UUID,
    benefit_category: str,
) -> BudgetLedger:
    """Return the ledger row, inserting it with the default limit if absent.

    A concurrent insert of the same key surfaces as IntegrityError on flush;
    callers treat that like a version conflict and retry.
    """
    ledger = await get_ledger(session, employee_id, benefit_category)
    if ledger is None:
        ledger = BudgetLedger(
            employee_id=employee_id,
            benefit_category=benefit_category,
            total_limit_minor=default_limit_minor(benefit_category),
        )
        session.add(ledger)
        await session.flush()
    return ledger


async def _cas_ledger(session: AsyncSession, ledger: BudgetLedger, **values: int) -> bool:
    """Write new balances only if the row still carries the version we read."""
    result = await session.execute(
        update(BudgetLedger)
        .where(
            col(BudgetLedger.employee_id) == ledger.employee_id,
            col(BudgetLedger.benefit_category) == ledger.benefit_category,
            col(BudgetLedger.version) == ledger.version,
        )
        .values(version=ledger.version + 1, updated_at=now_utc(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1  # type: ignore[attr-defined]


async def _get_hold(session: AsyncSession, hold_id: uuid.UUID) -> LedgerHold | None:
    result = await session.execute(
        select(LedgerHold).where(col(LedgerHold.id) == hold_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Hold lifecycle
# ---------------------------------------------------------------------------


async def reserve(
    session: AsyncSession,
    *,
    request_id: uuid.UUID,
    employee_id: uuid.UUID,
    benefit_category: str,
    amount_minor: int,
) -> tuple[LedgerOutcome, LedgerHold | None]:
    """Create an ACTIVE hold and move its amount from available to reserved."""
    ledger = await get_or_create_ledger(session, employee_id, benefit_category)
    if ledger.total_limit_minor == 0 and amount_minor > 0:
        return LedgerOutcome.UNFUNDED, None
    if ledger.available_minor < amount_minor:
        return LedgerOutcome.INSUFFICIENT, None

    if not await _cas_ledger(session, ledger, reserved_minor=ledger.reserved_minor + amount_minor):
        return LedgerOutcome.CONFLICT, None

    hold = LedgerHold(
        request_id=request_id,
        employee_id=employee_id,
        benefit_category=benefit_category,
        amount_minor=amount_minor,
        state=HoldState.ACTIVE.value,
    )
    session.add(hold)
    await session.flush()
    return LedgerOutcome.APPLIED, hold


async def _resolve_hold(session: AsyncSession, hold_id: uuid.UUID | None, target: HoldState) -> LedgerOutcome:
    """Move an ACTIVE hold to COMMITTED or RELEASED. Terminal holds are left alone."""
    if hold_id is None:
        return LedgerOutcome.NOOP
    hold = await _get_hold(session, hold_id)
    if hold is None or hold.state != HoldState.ACTIVE.value:
        return LedgerOutcome.NOOP

    ledger = await get_ledger(session, hold.employee_id, hold.benefit_category)
    if ledger is None:
        msg = f"Ledger row missing for active hold {hold.id}"
        raise RuntimeError(msg)

    values = {"reserved_minor": ledger.reserved_minor - hold.amount_minor}
    if target == HoldState.COMMITTED:
        values["committed_minor"] = ledger.committed_minor + hold.amount_minor
    if not await _cas_ledger(session, ledger, **values):
        return LedgerOutcome.CONFLICT

    result = await session.execute(
        update(LedgerHold)
        .where(col(LedgerHold.id) == hold.id, col(LedgerHold.state) == HoldState.ACTIVE.value)
        .values(state=target.value, resolved_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:  # type: ignore[attr-defined]
        return LedgerOutcome.CONFLICT
    return LedgerOutcome.APPLIED


async def commit_hold(session: AsyncSession, hold_id: uuid.UUID | None) -> LedgerOutcome:
    """Turn a hold into a permanent debit: reserved decreases, committed increases."""
    return await _resolve_hold(session, hold_id, HoldState.COMMITTED)


async def release_hold(session: AsyncSession, hold_id: uuid.UUID | None) -> LedgerOutcome:
    """Discard a hold, restoring its amount to available."""
    return await _resolve_hold(session, hold_id, HoldState.RELEASED)


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


async def get_ledger_snapshot(
    session: AsyncSession,
    employee_id: uuid.UUID,
    benefit_category: str,
) -> LedgerSnapshotResponse:
    """Current totals; a never-written ledger reports its default limit."""
    ledger = await get_ledger(session, employee_id, benefit_category)
    if ledger is None:
        return _build_snapshot_response(
            BudgetLedger(
                employee_id=employee_id,
                benefit_category=benefit_category,
                total_limit_minor=default_limit_minor(benefit_category),
            ),
            updated=False,
        )
    return _build_snapshot_response(ledger)


async def list_holds(
    session: AsyncSession,
    employee_id: uuid.UUID,
    benefit_category: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> HoldListResponse:
    """List an employee's holds, newest first."""
    filters = [col(LedgerHold.employee_id) == employee_id]
    if benefit_category is not None:
        filters.append(col(LedgerHold.benefit_category) == benefit_category)

    count_result = await session.execute(select(func.count()).select_from(LedgerHold).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(LedgerHold)
        .where(*filters)
        .order_by(col(LedgerHold.created_at).desc())
        .offset(offset)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return HoldListResponse(
        items=[_build_hold_response(h) for h in result.scalars().all()],
        total=total,
    )


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


async def set_ledger_limit(
    session: AsyncSession,
    employee_id: uuid.UUID,
    benefit_category: str,
    total_limit: Decimal,
) -> LedgerSnapshotResponse:
    """Set the total limit of a ledger, keeping available non-negative."""
    new_limit = to_minor(total_limit)
    attempts = get_settings().max_transition_retries

    for attempt in range(1, attempts + 1):
        try:
            ledger = await get_or_create_ledger(session, employee_id, benefit_category)
        except IntegrityError:
            await session.rollback()
            continue
        in_use = ledger.committed_minor + ledger.reserved_minor
        if new_limit < in_use:
            await session.rollback()
            raise AppError(
                f"Limit {total_limit} is below committed plus reserved amount {from_minor(in_use)}",
                status_code=400,
            )
        if await _cas_ledger(session, ledger, total_limit_minor=new_limit):
            await session.commit()
            logger.info("Ledger %s/%s limit set to %s", employee_id, benefit_category, total_limit)
            refreshed = await get_ledger(session, employee_id, benefit_category)
            assert refreshed is not None
            return _build_snapshot_response(refreshed)
        logger.debug("Ledger limit CAS missed for %s/%s (attempt %d)", employee_id, benefit_category, attempt)
        await session.rollback()

    raise AppError("Ledger is under contention, try again", status_code=409)
