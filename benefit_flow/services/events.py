# ruff: noqa: TC003
"""Event dispatcher adapter and the transition outbox.

Every transition inserts a ``TransitionEvent`` row in the same transaction
as the state change. Once that transaction commits, the engine hands the
events to the active dispatcher and marks them delivered. Events whose
delivery failed stay undelivered and are picked up again by
``redeliver_pending_events`` (run periodically by the worker), which makes
delivery at-least-once and strictly post-commit.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import select, update
from sqlmodel import col

from benefit_flow.models.base import now_utc
from benefit_flow.models.outbox import TransitionEvent

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionNotice:
    """Detached copy of an outbox row, safe to use after the session moves on."""

    event_id: uuid.UUID
    request_id: uuid.UUID
    from_state: str
    to_state: str
    actor_id: uuid.UUID
    occurred_at: datetime

    @classmethod
    def from_event(cls, event: TransitionEvent) -> TransitionNotice:
        return cls(
            event_id=event.id,
            request_id=event.request_id,
            from_state=event.from_state,
            to_state=event.to_state,
            actor_id=event.actor_id,
            occurred_at=event.occurred_at,
        )


@runtime_checkable
class EventDispatcher(Protocol):
    """Receives committed transitions. Delivery to real sinks lives elsewhere."""

    async def on_transition(
        self,
        request_id: uuid.UUID,
        from_state: str,
        to_state: str,
        actor_id: uuid.UUID,
        timestamp: datetime,
    ) -> None: ...


class LoggingEventDispatcher:
    """Default dispatcher: writes each transition to the application log."""

    async def on_transition(
        self,
        request_id: uuid.UUID,
        from_state: str,
        to_state: str,
        actor_id: uuid.UUID,
        timestamp: datetime,
    ) -> None:
        logger.info(
            "Request %s moved %s -> %s by %s at %s",
            request_id,
            from_state,
            to_state,
            actor_id,
            timestamp.isoformat(),
        )


class RecordingEventDispatcher:
    """Keeps every received transition in memory (tests and local development)."""

    def __init__(self) -> None:
        self.received: list[tuple[uuid.UUID, str, str, uuid.UUID, datetime]] = []

    async def on_transition(
        self,
        request_id: uuid.UUID,
        from_state: str,
        to_state: str,
        actor_id: uuid.UUID,
        timestamp: datetime,
    ) -> None:
        self.received.append((request_id, from_state, to_state, actor_id, timestamp))

    def transitions_for(self, request_id: uuid.UUID) -> list[tuple[str, str]]:
        return [(frm, to) for rid, frm, to, _, _ in self.received if rid == request_id]


_event_dispatcher: EventDispatcher = LoggingEventDispatcher()


def get_event_dispatcher() -> EventDispatcher:
    """Return the active dispatcher."""
    return _event_dispatcher


def set_event_dispatcher(dispatcher: EventDispatcher) -> None:
    """Override the dispatcher (for testing or production wiring)."""
    global _event_dispatcher
    _event_dispatcher = dispatcher


# ---------------------------------------------------------------------------
# Outbox delivery
# ---------------------------------------------------------------------------


async def dispatch_notices(
    session: AsyncSession,
    notices: Sequence[TransitionNotice],
    dispatcher: EventDispatcher | None = None,
) -> int:
    """Deliver committed transitions and record the outcome. Returns the delivered count.

    Must only be called after the transaction that wrote the events has committed.
    """
    dispatcher = dispatcher or get_event_dispatcher()
    delivered = 0
    for notice in notices:
        values: dict[str, object] = {"attempts": col(TransitionEvent.attempts) + 1}
        try:
            await dispatcher.on_transition(
                request_id=notice.request_id,
                from_state=notice.from_state,
                to_state=notice.to_state,
                actor_id=notice.actor_id,
                timestamp=notice.occurred_at,
            )
        except Exception:
            logger.exception(
                "Dispatch failed for event %s (%s -> %s); left for redelivery",
                notice.event_id,
                notice.from_state,
                notice.to_state,
            )
        else:
            values["delivered_at"] = now_utc()
            delivered += 1
        await session.execute(
            update(TransitionEvent)
            .where(col(TransitionEvent.id) == notice.event_id, col(TransitionEvent.delivered_at).is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
    await session.commit()
    return delivered


async def redeliver_pending_events(
    session: AsyncSession,
    batch_size: int = 100,
    dispatcher: EventDispatcher | None = None,
) -> int:
    """Retry undelivered outbox rows, oldest first. Returns the delivered count."""
    result = await session.execute(
        select(TransitionEvent)
        .where(col(TransitionEvent.delivered_at).is_(None))
        .order_by(col(TransitionEvent.occurred_at))
        .limit(batch_size)
    )
    notices = [TransitionNotice.from_event(event) for event in result.scalars().all()]
    if not notices:
        return 0
    logger.info("Redelivering %d pending transition events", len(notices))
    return await dispatch_notices(session, notices, dispatcher)
