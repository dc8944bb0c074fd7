# ruff: noqa: TC003
"""Read-side projections over requests: detail view, filtered lists, approver inbox.

Screens never derive workflow state themselves; they query it here by the
stored state string.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from benefit_flow.exceptions import AppError
from benefit_flow.models.enums import Decision, Stage
from benefit_flow.models.request import BenefitRequest, RequestStageEvent
from benefit_flow.schemas.request import (
    RequestListResponse,
    RequestResponse,
    RevisionInfo,
    StageEventResponse,
)
from benefit_flow.services.money import from_minor
from benefit_flow.services.roles import get_role_provider
from benefit_flow.services.state_machine import WorkflowState, actionable_states

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_revision_info(revision: dict | None) -> RevisionInfo | None:
    if not revision:
        return None
    return RevisionInfo(
        requested_by=uuid.UUID(revision["requested_by"]),
        requested_at_stage=Stage(revision["requested_at_stage"]),
        note=revision["note"],
        requested_at=datetime.fromisoformat(revision["requested_at"]),
        attachments_required=bool(revision.get("attachments_required", True)),
    )


def _build_request_response(
    request: BenefitRequest,
    history: list[RequestStageEvent] | None = None,
) -> RequestResponse:
    """Map a request model to its response schema."""
    return RequestResponse(
        id=request.id,
        category=request.category,
        benefit_category=request.benefit_category,
        requester_id=request.requester_id,
        amount=from_minor(request.amount_minor),
        state=request.state,
        stages=[Stage(s) for s in request.stages_json or []],
        payload=request.payload_json,
        attachments=list(request.attachments_json or []),
        revision=_build_revision_info(request.revision_json),
        ledger_hold_id=request.ledger_hold_id,
        version=request.version,
        idempotency_key=request.idempotency_key,
        submitted_at=request.submitted_at,
        decided_at=request.decided_at,
        created_at=request.created_at,
        history=[
            StageEventResponse(
                seq=event.seq,
                stage=Stage(event.stage) if event.stage else None,
                actor_id=event.actor_id,
                decision=Decision(event.decision),
                note=event.note,
                created_at=event.created_at,
            )
            for event in history or []
        ],
    )


async def _load_history(session: AsyncSession, request_id: uuid.UUID) -> list[RequestStageEvent]:
    result = await session.execute(
        select(RequestStageEvent)
        .where(col(RequestStageEvent.request_id) == request_id)
        .order_by(col(RequestStageEvent.seq))
    )
    return list(result.scalars().all())


async def _get_request_or_404(session: AsyncSession, request_id: uuid.UUID) -> BenefitRequest:
    """Fetch a request by ID. Raises 404 if not found."""
    result = await session.execute(
        select(BenefitRequest)
        .where(col(BenefitRequest.id) == request_id)
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise AppError("Request not found", status_code=404)
    return request


async def build_request_detail(session: AsyncSession, request: BenefitRequest) -> RequestResponse:
    """Response for a single request, including its stage history."""
    return _build_request_response(request, await _load_history(session, request.id))


async def _paginate(
    session: AsyncSession,
    filters: list,
    offset: int,
    limit: int,
) -> RequestListResponse:
    count_result = await session.execute(select(func.count()).select_from(BenefitRequest).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(BenefitRequest)
        .where(*filters)
        .order_by(col(BenefitRequest.created_at).desc())
        .offset(offset)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return RequestListResponse(
        items=[_build_request_response(r) for r in result.scalars().all()],
        total=total,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def get_request(session: AsyncSession, request_id: uuid.UUID) -> RequestResponse:
    """Get a single request by ID, with history."""
    request = await _get_request_or_404(session, request_id)
    return await build_request_detail(session, request)


async def list_requests(
    session: AsyncSession,
    state: str | None = None,
    requester_id: uuid.UUID | None = None,
    category: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> RequestListResponse:
    """List requests with optional filters, ordered by created_at DESC."""
    filters = []
    if state is not None:
        try:
            state = str(WorkflowState.parse(state))
        except ValueError:
            raise AppError(f"Unknown state filter '{state}'", status_code=400) from None
        filters.append(col(BenefitRequest.state) == state)
    if requester_id is not None:
        filters.append(col(BenefitRequest.requester_id) == requester_id)
    if category is not None:
        filters.append(col(BenefitRequest.category) == category)
    return await _paginate(session, filters, offset, limit)


async def list_actionable_requests(
    session: AsyncSession,
    actor_id: uuid.UUID,
    offset: int = 0,
    limit: int = 50,
) -> RequestListResponse:
    """Requests pending at any stage the actor holds the role for."""
    roles = await get_role_provider().get_roles(actor_id)
    states = actionable_states(roles)
    if not states:
        return RequestListResponse(items=[], total=0)
    return await _paginate(session, [col(BenefitRequest.state).in_(states)], offset, limit)
