# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from benefit_flow.models.enums import Decision, Stage

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


def _clean_attachments(value: list[str]) -> list[str]:
    cleaned: list[str] = []
    for uri in value:
        uri = uri.strip()
        if uri and uri not in cleaned:
            cleaned.append(uri)
    return cleaned


class SubmitRequestPayload(BaseModel):
    """Request body for creating (and optionally submitting) a request."""

    category: str = Field(min_length=1, max_length=50)
    amount: Decimal = Field(ge=0, max_digits=14, decimal_places=2)
    payload: dict[str, Any] | None = None
    attachments: list[str] = Field(default_factory=list)
    idempotency_key: str | None = Field(default=None, max_length=255)

    @field_validator("attachments")
    @classmethod
    def _validate_attachments(cls, value: list[str]) -> list[str]:
        return _clean_attachments(value)


class DecisionPayload(BaseModel):
    """Request body for approve. ``stage`` is the stage the approver acted on."""

    stage: Stage | None = None
    note: str | None = Field(default=None, max_length=1000)


class RejectPayload(BaseModel):
    """Request body for reject."""

    stage: Stage | None = None
    reason: str = Field(min_length=1, max_length=1000)


class RevisionPayload(BaseModel):
    """Request body for sending a request back for more documents."""

    stage: Stage | None = None
    note: str = Field(min_length=1, max_length=1000)
    attachments_required: bool | None = None


class ResubmitPayload(BaseModel):
    """Request body for resubmitting after a revision request."""

    attachments: list[str] = Field(default_factory=list)

    @field_validator("attachments")
    @classmethod
    def _validate_attachments(cls, value: list[str]) -> list[str]:
        return _clean_attachments(value)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class RevisionInfo(BaseModel):
    """Pending revision details; absent once the requester resubmits."""

    requested_by: uuid.UUID
    requested_at_stage: Stage
    note: str
    requested_at: datetime
    attachments_required: bool


class StageEventResponse(BaseModel):
    """One stage history entry."""

    seq: int
    stage: Stage | None
    actor_id: uuid.UUID
    decision: Decision
    note: str | None
    created_at: datetime


class RequestResponse(BaseModel):
    """Response schema for a single request."""

    id: uuid.UUID
    category: str
    benefit_category: str
    requester_id: uuid.UUID
    amount: Decimal
    state: str
    stages: list[Stage]
    payload: dict[str, Any] | None
    attachments: list[str]
    revision: RevisionInfo | None
    ledger_hold_id: uuid.UUID | None
    version: int
    idempotency_key: str | None
    submitted_at: datetime | None
    decided_at: datetime | None
    created_at: datetime
    history: list[StageEventResponse] = Field(default_factory=list)


class RequestListResponse(BaseModel):
    """Paginated list of requests."""

    items: list[RequestResponse]
    total: int
