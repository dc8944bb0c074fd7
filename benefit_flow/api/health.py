import logging
from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlmodel import col

from benefit_flow.config import get_settings
from benefit_flow.db import SessionDep
from benefit_flow.models.outbox import TransitionEvent

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok", "degraded"]
    version: str
    environment: str
    undelivered_events: int | None = None


@router.get("/health", response_model=HealthResponse)
async def health(session: SessionDep) -> HealthResponse:
    """Report database reachability and the transition outbox backlog."""
    settings = get_settings()
    backlog: int | None = None

    try:
        result = await session.execute(
            select(func.count()).select_from(TransitionEvent).where(col(TransitionEvent.delivered_at).is_(None))
        )
        backlog = result.scalar_one()
    except Exception:
        logger.exception("Health check: database connectivity failed")

    return HealthResponse(
        status="ok" if backlog is not None else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        undelivered_events=backlog,
    )
