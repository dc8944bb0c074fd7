# ruff: noqa: TC003
"""Send-back-for-revision side path.

A reviewer at the current stage can park a request in
``revision_requested:<stage>``; the requester answers with new attachments
and the request returns to that same stage. The hold created at submission
stays ACTIVE the whole time, so any number of revision cycles reserve the
budget exactly once. Every cycle is recorded in stage history.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from benefit_flow.models.base import now_utc
from benefit_flow.models.enums import Stage, StateKind
from benefit_flow.services.engine import (
    CONFLICT,
    StepOutcome,
    _Applied,
    _apply_plan,
    _load_request,
    _not_found,
    _run_transition,
    _stages_of,
)
from benefit_flow.services.results import WorkflowError, WorkflowErrorCode, WorkflowResult
from benefit_flow.services.roles import get_role_provider
from benefit_flow.services.state_machine import WorkflowState, plan_request_revision, plan_resubmit
from benefit_flow.services.workflow import get_definition

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


def _attachments_required_by(category: str, stage: Stage) -> bool:
    definition = get_definition(category)
    required = definition.required_stage(stage) if definition is not None else None
    return required.revision_requires_attachments if required is not None else True


async def request_revision(
    session: AsyncSession,
    request_id: uuid.UUID,
    actor_id: uuid.UUID,
    note: str,
    stage: Stage | None = None,
    attachments_required: bool | None = None,
) -> WorkflowResult:
    """Send the request back to its requester. The ledger hold is left untouched.

    ``attachments_required`` overrides the stage's default demand for new
    attachments on resubmission.
    """
    note = note.strip()
    if not note:
        return WorkflowResult.failure(WorkflowErrorCode.INVALID_INPUT, "A revision note is required")
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
        plan = plan_request_revision(state, _stages_of(request), pinned, roles)
        if isinstance(plan, WorkflowError):
            return WorkflowResult.from_error(plan)
        assert plan.stage is not None

        revision: dict[str, Any] = {
            "requested_by": str(actor_id),
            "requested_at_stage": plan.stage.value,
            "note": note,
            "requested_at": now_utc().isoformat(),
            "attachments_required": (
                attachments_required
                if attachments_required is not None
                else _attachments_required_by(request.category, plan.stage)
            ),
        }
        notices = await _apply_plan(
            session, request, plan, actor_id, note=note, extra_values={"revision_json": revision}
        )
        return CONFLICT if notices is None else _Applied(request.id, notices)

    return await _run_transition(session, "request_revision", step)


async def resubmit(
    session: AsyncSession,
    request_id: uuid.UUID,
    requester_id: uuid.UUID,
    attachments: list[str] | None = None,
) -> WorkflowResult:
    """Answer a revision request and return to the stage that issued it.

    Only attachments not already on the request count as new.
    """

    async def step() -> StepOutcome:
        request = await _load_request(session, request_id)
        if request is None:
            return _not_found(request_id)
        existing = list(request.attachments_json or [])
        new = [uri for uri in dict.fromkeys(attachments or []) if uri and uri not in existing]
        revision = request.revision_json or {}

        plan = plan_resubmit(
            WorkflowState.parse(request.state),
            is_owner=request.requester_id == requester_id,
            attachments_required=bool(revision.get("attachments_required", True)),
            new_attachment_count=len(new),
        )
        if isinstance(plan, WorkflowError):
            return WorkflowResult.from_error(plan)

        notices = await _apply_plan(
            session,
            request,
            plan,
            requester_id,
            note=f"{len(new)} attachment(s) added" if new else None,
            extra_values={"revision_json": sa.null(), "attachments_json": existing + new},
        )
        return CONFLICT if notices is None else _Applied(request.id, notices)

    return await _run_transition(session, "resubmit", step)
