# ruff: noqa: TC003
"""Approval state machine executor.

Each operation runs as one transaction scoped to a request, its hold and
its ledger row:

1. Fresh read of the request (and, through the ledger store, the ledger row).
2. Plan the transition with the pure rules in ``state_machine``.
3. CAS-write the request on ``version``, apply the ledger side effect,
   append stage history and an outbox event.
4. Commit, then hand the committed events to the dispatcher.

A CAS miss or unique-constraint race anywhere in step 3 rolls the whole
transaction back and the operation starts again from step 1, up to
``max_transition_retries`` times. The stage an actor acts on is pinned on
the first read, so a writer that lost a race re-reads, finds the request has
moved on, and reports STALE_STATE instead of acting on the next stage.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from benefit_flow.config import get_settings
from benefit_flow.models.base import now_utc
from benefit_flow.models.enums import LedgerAction, Stage, StateKind
from benefit_flow.models.outbox import TransitionEvent
from benefit_flow.models.request import BenefitRequest, RequestStageEvent
from benefit_flow.services import ledger as ledger_store
from benefit_flow.services.events import TransitionNotice, dispatch_notices
from benefit_flow.services.money import from_minor, to_minor
from benefit_flow.services.results import WorkflowError, WorkflowErrorCode, WorkflowResult
from benefit_flow.services.roles import get_role_provider
from benefit_flow.services.state_machine import (
    DRAFT,
    TransitionPlan,
    WorkflowState,
    plan_approve,
    plan_cancel,
    plan_reject,
    plan_submit,
)
from benefit_flow.services.workflow import get_definition

if TYPE_CHECKING:
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from benefit_flow.schemas.ledger import LedgerSnapshotResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Applied:
    """A transition written in the open transaction, ready to commit."""

    request_id: uuid.UUID
    notices: list[TransitionNotice]


class _Conflict:
    """Marker: a concurrent writer got there first; retry from a fresh read."""


CONFLICT = _Conflict()

StepOutcome = _Applied | WorkflowResult | _Conflict


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


async def _load_request(session: AsyncSession, request_id: uuid.UUID) -> BenefitRequest | None:
    """Fresh read of a request, bypassing any stale identity-map copy."""
    result = await session.execute(
        select(BenefitRequest)
        .where(col(BenefitRequest.id) == request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _stages_of(request: BenefitRequest) -> list[Stage]:
    return [Stage(s) for s in request.stages_json or []]


def _not_found(request_id: uuid.UUID) -> WorkflowResult:
    return WorkflowResult.failure(WorkflowErrorCode.NOT_FOUND, f"Request {request_id} not found")


async def _next_seq(session: AsyncSession, request_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.coalesce(func.max(col(RequestStageEvent.seq)), 0)).where(
            col(RequestStageEvent.request_id) == request_id
        )
    )
    return int(result.scalar_one()) + 1


async def _apply_plan(
    session: AsyncSession,
    request: BenefitRequest,
    plan: TransitionPlan,
    actor_id: uuid.UUID,
    note: str | None = None,
    extra_values: dict[str, Any] | None = None,
) -> list[TransitionNotice] | None:
    """Write one planned transition. Returns None when a CAS check misses.

    RESERVE is handled by the caller before this runs, since the hold id has
    to be written onto the request together with the new state.
    """
    now = now_utc()
    values: dict[str, Any] = {
        "state": str(plan.to_state),
        "version": request.version + 1,
        "updated_at": now,
        **(extra_values or {}),
    }
    if plan.to_state.is_terminal:
        values["decided_at"] = now

    result = await session.execute(
        update(BenefitRequest)
        .where(col(BenefitRequest.id) == request.id, col(BenefitRequest.version) == request.version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:  # type: ignore[attr-defined]
        return None

    if plan.ledger_action == LedgerAction.COMMIT:
        outcome = await ledger_store.commit_hold(session, request.ledger_hold_id)
    elif plan.ledger_action == LedgerAction.RELEASE:
        outcome = await ledger_store.release_hold(session, request.ledger_hold_id)
    else:
        outcome = ledger_store.LedgerOutcome.NOOP
    if outcome == ledger_store.LedgerOutcome.CONFLICT:
        return None

    session.add(
        RequestStageEvent(
            request_id=request.id,
            seq=await _next_seq(session, request.id),
            stage=plan.stage.value if plan.stage is not None else None,
            actor_id=actor_id,
            decision=plan.decision.value,
            note=note,
        )
    )
    event = TransitionEvent(
        request_id=request.id,
        from_state=str(plan.from_state),
        to_state=str(plan.to_state),
        actor_id=actor_id,
        occurred_at=now,
    )
    session.add(event)
    await session.flush()
    return [TransitionNotice.from_event(event)]


async def _run_transition(
    session: AsyncSession,
    operation: str,
    step: Callable[[], Awaitable[StepOutcome]],
) -> WorkflowResult:
    """Run ``step`` in its own transaction, retrying on optimistic conflicts."""
    attempts = get_settings().max_transition_retries
    for attempt in range(1, attempts + 1):
        try:
            outcome = await step()
        except IntegrityError:
            logger.debug("%s hit a uniqueness race (attempt %d)", operation, attempt)
            outcome = CONFLICT

        if isinstance(outcome, _Conflict):
            await session.rollback()
            logger.debug("%s lost a version race (attempt %d), retrying", operation, attempt)
            continue

        if isinstance(outcome, WorkflowResult):
            # Nothing of this attempt is kept; reload any returned request after the rollback.
            kept_id = outcome.request.id if outcome.request is not None else None
            await session.rollback()
            if kept_id is None:
                return outcome
            return WorkflowResult(request=await _load_request(session, kept_id), error=outcome.error)

        await session.commit()
        for notice in outcome.notices:
            logger.info("%s: request %s %s -> %s", operation, notice.request_id, notice.from_state, notice.to_state)
        await dispatch_notices(session, outcome.notices)
        request = await _load_request(session, outcome.request_id)
        assert request is not None
        return WorkflowResult.success(request)

    logger.warning("%s gave up after %d conflicting attempts", operation, attempts)
    return WorkflowResult.failure(
        WorkflowErrorCode.CONTENTION,
        f"Request is under contention; {attempts} attempts conflicted",
    )


def _parse_amount(amount: Decimal) -> int | WorkflowError:
    try:
        amount_minor = to_minor(amount)
    except ValueError as exc:
        return WorkflowError(WorkflowErrorCode.INVALID_INPUT, str(exc))
    if amount_minor < 0:
        return WorkflowError(WorkflowErrorCode.INVALID_INPUT, "Amount must not be negative")
    return amount_minor


def _new_draft(
    category: str,
    benefit_category: str,
    requester_id: uuid.UUID,
    amount_minor: int,
    payload: dict[str, Any] | None,
    attachments: list[str] | None,
    idempotency_key: str | None,
) -> BenefitRequest:
    return BenefitRequest(
        category=category,
        benefit_category=benefit_category,
        requester_id=requester_id,
        amount_minor=amount_minor,
        payload_json=payload,
        attachments_json=list(attachments or []),
        state=str(DRAFT),
        idempotency_key=idempotency_key,
    )


async def _find_by_idempotency_key(
    session: AsyncSession, requester_id: uuid.UUID, idempotency_key: str
) -> BenefitRequest | None:
    result = await session.execute(
        select(BenefitRequest).where(
            col(BenefitRequest.requester_id) == requester_id,
            col(BenefitRequest.idempotency_key) == idempotency_key,
        )
    )
    return result.scalar_one_or_none()


def _replay(existing: BenefitRequest, category: str, amount_minor: int, *, submitted: bool) -> WorkflowResult:
    """Answer a repeated call carrying an idempotency key that is already in use."""
    if existing.category != category or existing.amount_minor != amount_minor:
        return WorkflowResult.failure(
            WorkflowErrorCode.INVALID_INPUT,
            f"Idempotency key '{existing.idempotency_key}' was used for a different request",
        )
    if submitted and existing.state == str(DRAFT):
        return WorkflowResult.failure(
            WorkflowErrorCode.STALE_STATE,
            f"Idempotency key '{existing.idempotency_key}' belongs to an unsubmitted draft; submit the draft instead",
        )
    return WorkflowResult.success(existing)


async def _submit_loaded(session: AsyncSession, request: BenefitRequest, actor_id: uuid.UUID) -> StepOutcome:
    """Resolve stages, reserve budget and move a loaded draft to its first stage."""
    definition = get_definition(request.category)
    if definition is None:
        return WorkflowResult.failure(
            WorkflowErrorCode.CONFIGURATION_ERROR, f"Unknown request category '{request.category}'"
        )
    stages = definition.resolve(from_minor(request.amount_minor))

    plan = plan_submit(WorkflowState.parse(request.state), stages)
    if isinstance(plan, WorkflowError):
        return WorkflowResult.from_error(plan)

    outcome, hold = await ledger_store.reserve(
        session,
        request_id=request.id,
        employee_id=request.requester_id,
        benefit_category=definition.benefit_category,
        amount_minor=request.amount_minor,
    )
    if outcome == ledger_store.LedgerOutcome.UNFUNDED:
        return WorkflowResult.failure(
            WorkflowErrorCode.INSUFFICIENT_BUDGET,
            f"No '{definition.benefit_category}' budget is configured for this employee; "
            "an administrator must set a limit before requests can be submitted",
        )
    if outcome == ledger_store.LedgerOutcome.INSUFFICIENT:
        return WorkflowResult.failure(
            WorkflowErrorCode.INSUFFICIENT_BUDGET,
            f"Insufficient '{definition.benefit_category}' budget for {from_minor(request.amount_minor)}",
        )
    if outcome == ledger_store.LedgerOutcome.CONFLICT or hold is None:
        return CONFLICT

    notices = await _apply_plan(
        session,
        request,
        plan,
        actor_id,
        extra_values={
            "benefit_category": definition.benefit_category,
            "stages_json": [s.value for s in stages],
            "ledger_hold_id": hold.id,
            "submitted_at": now_utc(),
        },
    )
    if notices is None:
        return CONFLICT
    return _Applied(request.id, notices)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def create_draft(
    session: AsyncSession,
    *,
    category: str,
    requester_id: uuid.UUID,
    amount: Decimal,
    payload: dict[str, Any] | None = None,
    attachments: list[str] | None = None,
    idempotency_key: str | None = None,
) -> WorkflowResult:
    """Persist a request in ``draft`` without touching the ledger."""
    definition = get_definition(category)
    if definition is None:
        return WorkflowResult.failure(WorkflowErrorCode.CONFIGURATION_ERROR, f"Unknown request category '{category}'")
    amount_minor = _parse_amount(amount)
    if isinstance(amount_minor, WorkflowError):
        return WorkflowResult.from_error(amount_minor)

    if idempotency_key is not None:
        existing = await _find_by_idempotency_key(session, requester_id, idempotency_key)
        if existing is not None:
            return _replay(existing, category, amount_minor, submitted=False)

    request = _new_draft(
        category, definition.benefit_category, requester_id, amount_minor, payload, attachments, idempotency_key
    )
    session.add(request)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        if idempotency_key is not None:
            existing = await _find_by_idempotency_key(session, requester_id, idempotency_key)
            if existing is not None:
                return _replay(existing, category, amount_minor, submitted=False)
        raise
    await session.refresh(request)
    return WorkflowResult.success(request)


async def submit_new_request(
    session: AsyncSession,
    *,
    category: str,
    requester_id: uuid.UUID,
    amount: Decimal,
    payload: dict[str, Any] | None = None,
    attachments: list[str] | None = None,
    idempotency_key: str | None = None,
) -> WorkflowResult:
    """Create a request and submit it in one transaction.

    The request row and its hold are written together; on any failure
    (unknown category, insufficient budget) nothing is persisted.
    """
    definition = get_definition(category)
    if definition is None:
        return WorkflowResult.failure(WorkflowErrorCode.CONFIGURATION_ERROR, f"Unknown request category '{category}'")
    amount_minor = _parse_amount(amount)
    if isinstance(amount_minor, WorkflowError):
        return WorkflowResult.from_error(amount_minor)

    async def step() -> StepOutcome:
        if idempotency_key is not None:
            existing = await _find_by_idempotency_key(session, requester_id, idempotency_key)
            if existing is not None:
                return _replay(existing, category, amount_minor, submitted=True)
        request = _new_draft(
            category, definition.benefit_category, requester_id, amount_minor, payload, attachments, idempotency_key
        )
        session.add(request)
        await session.flush()
        return await _submit_loaded(session, request, requester_id)

    return await _run_transition(session, "submit", step)


async def submit_draft(session: AsyncSession, request_id: uuid.UUID, requester_id: uuid.UUID) -> WorkflowResult:
    """Submit an existing draft. On INSUFFICIENT_BUDGET the draft is left as is."""

    async def step() -> StepOutcome:
        request = await _load_request(session, request_id)
        if request is None:
            return _not_found(request_id)
        if request.requester_id != requester_id:
            return WorkflowResult.failure(WorkflowErrorCode.NOT_OWNER, "Only the requester can submit this request")
        return await _submit_loaded(session, request, requester_id)

    return await _run_transition(session, "submit", step)


async def approve(
    session: AsyncSession,
    request_id: uuid.UUID,
    actor_id: uuid.UUID,
    stage: Stage | None = None,
    note: str | None = None,
) -> WorkflowResult:
    """Approve the stage; the final approval commits the hold and completes the request."""
    roles = await get_role_provider().get_roles(actor_id)
    pinned = stage

    async def step() -> StepOutcome:
        nonlocal pinned
        request = await _load_request(session, request_id)
        if request is None:
            return _not_found(request_id)
        state = WorkflowState.parse(request.state)
        if pinned is None and state.kind == StateKind.PENDING:
            pinned = state.stage
        plan = plan_approve(state, _stages_of(request), pinned, roles)
        if isinstance(plan, WorkflowError):
            return WorkflowResult.from_error(plan)
        notices = await _apply_plan(session, request, plan, actor_id, note=note)
        return CONFLICT if notices is None else _Applied(request.id, notices)

    return await _run_transition(session, "approve", step)


async def reject(
    session: AsyncSession,
    request_id: uuid.UUID,
    actor_id: uuid.UUID,
    reason: str,
    stage: Stage | None = None,
) -> WorkflowResult:
    """Reject at the stage, releasing the hold. Terminal."""
    if not reason.strip():
        return WorkflowResult.failure(WorkflowErrorCode.INVALID_INPUT, "A rejection reason is required")
    roles = await get_role_provider().get_roles(actor_id)
    pinned = stage

    async def step() -> StepOutcome:
        nonlocal pinned
        request = await _load_request(session, request_id)
        if request is None:
            return _not_found(request_id)
        state = WorkflowState.parse(request.state)
        if pinned is None and state.kind == StateKind.PENDING:
            pinned = state.stage
        plan = plan_reject(state, _stages_of(request), pinned, roles)
        if isinstance(plan, WorkflowError):
            return WorkflowResult.from_error(plan)
        notices = await _apply_plan(session, request, plan, actor_id, note=reason.strip())
        return CONFLICT if notices is None else _Applied(request.id, notices)

    return await _run_transition(session, "reject", step)


async def cancel(session: AsyncSession, request_id: uuid.UUID, requester_id: uuid.UUID) -> WorkflowResult:
    """Requester withdraws a draft or a request not yet at its final stage."""

    async def step() -> StepOutcome:
        request = await _load_request(session, request_id)
        if request is None:
            return _not_found(request_id)
        plan = plan_cancel(
            WorkflowState.parse(request.state),
            _stages_of(request),
            is_owner=request.requester_id == requester_id,
        )
        if isinstance(plan, WorkflowError):
            return WorkflowResult.from_error(plan)
        notices = await _apply_plan(session, request, plan, requester_id)
        return CONFLICT if notices is None else _Applied(request.id, notices)

    return await _run_transition(session, "cancel", step)


async def get_ledger_snapshot(
    session: AsyncSession,
    employee_id: uuid.UUID,
    benefit_category: str,
) -> LedgerSnapshotResponse:
    """Budget position of one employee ledger."""
    return await ledger_store.get_ledger_snapshot(session, employee_id, benefit_category)
