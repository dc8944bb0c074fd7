# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi import APIRouter, Query, status

from benefit_flow.api.deps import AuthDep
from benefit_flow.db import SessionDep
from benefit_flow.exceptions import WorkflowFailure
from benefit_flow.schemas.request import (
    DecisionPayload,
    RejectPayload,
    RequestListResponse,
    RequestResponse,
    ResubmitPayload,
    RevisionPayload,
    SubmitRequestPayload,
)
from benefit_flow.services import engine, revision
from benefit_flow.services import request as request_service

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from benefit_flow.services.results import WorkflowResult

requests_router = APIRouter(prefix="/requests", tags=["requests"])


async def _respond(session: AsyncSession, result: WorkflowResult) -> RequestResponse:
    """Render a successful engine result, or raise its typed failure."""
    if result.error is not None:
        raise WorkflowFailure(result.error)
    assert result.request is not None
    return await request_service.build_request_detail(session, result.request)


@requests_router.post("", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_request(
    payload: SubmitRequestPayload,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Create and submit a request in one step, reserving its budget."""
    result = await engine.submit_new_request(
        session,
        category=payload.category,
        requester_id=auth.user_id,
        amount=payload.amount,
        payload=payload.payload,
        attachments=payload.attachments,
        idempotency_key=payload.idempotency_key,
    )
    return await _respond(session, result)


@requests_router.post("/drafts", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def create_draft(
    payload: SubmitRequestPayload,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Save a request as a draft without reserving budget."""
    result = await engine.create_draft(
        session,
        category=payload.category,
        requester_id=auth.user_id,
        amount=payload.amount,
        payload=payload.payload,
        attachments=payload.attachments,
        idempotency_key=payload.idempotency_key,
    )
    return await _respond(session, result)


@requests_router.get("", response_model=RequestListResponse)
async def list_requests(
    session: SessionDep,
    auth: AuthDep,
    state: str | None = Query(default=None),
    requester_id: uuid.UUID | None = Query(default=None),
    category: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """List requests with optional filters."""
    return await request_service.list_requests(session, state, requester_id, category, offset, limit)


@requests_router.get("/inbox", response_model=RequestListResponse)
async def list_inbox(
    session: SessionDep,
    auth: AuthDep,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """Requests waiting on a stage the caller can act on."""
    return await request_service.list_actionable_requests(session, auth.user_id, offset, limit)


@requests_router.get("/{request_id}", response_model=RequestResponse)
async def get_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Get a single request with its stage history."""
    return await request_service.get_request(session, request_id)


@requests_router.post("/{request_id}/submit", response_model=RequestResponse)
async def submit_draft(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Submit a draft, reserving its budget."""
    return await _respond(session, await engine.submit_draft(session, request_id, auth.user_id))


@requests_router.post("/{request_id}/approve", response_model=RequestResponse)
async def approve_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: DecisionPayload | None = None,
) -> RequestResponse:
    """Approve the request at its current (or the given) stage."""
    payload = payload or DecisionPayload()
    result = await engine.approve(session, request_id, auth.user_id, stage=payload.stage, note=payload.note)
    return await _respond(session, result)


@requests_router.post("/{request_id}/reject", response_model=RequestResponse)
async def reject_request(
    request_id: uuid.UUID,
    payload: RejectPayload,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Reject the request, releasing its reserved budget."""
    result = await engine.reject(session, request_id, auth.user_id, payload.reason, stage=payload.stage)
    return await _respond(session, result)


@requests_router.post("/{request_id}/revision", response_model=RequestResponse)
async def request_revision(
    request_id: uuid.UUID,
    payload: RevisionPayload,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Send the request back to the requester for more documents."""
    result = await revision.request_revision(
        session,
        request_id,
        auth.user_id,
        payload.note,
        stage=payload.stage,
        attachments_required=payload.attachments_required,
    )
    return await _respond(session, result)


@requests_router.post("/{request_id}/resubmit", response_model=RequestResponse)
async def resubmit_request(
    request_id: uuid.UUID,
    payload: ResubmitPayload,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Resubmit after a revision request with new attachments."""
    result = await revision.resubmit(session, request_id, auth.user_id, payload.attachments)
    return await _respond(session, result)


@requests_router.post("/{request_id}/cancel", response_model=RequestResponse)
async def cancel_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Withdraw a draft or a request that has not reached its final stage."""
    return await _respond(session, await engine.cancel(session, request_id, auth.user_id))
