"""Tests for the approval engine: submit, approve, reject, cancel, ledger
side effects, concurrency, idempotency and transition events.
"""

from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, select
from sqlmodel import col

from benefit_flow.models.enums import Decision, HoldState, Role, Stage
from benefit_flow.models.ledger import LedgerHold
from benefit_flow.models.outbox import TransitionEvent
from benefit_flow.models.request import BenefitRequest, RequestStageEvent
from benefit_flow.services import engine
from benefit_flow.services import ledger as ledger_store
from benefit_flow.services.results import WorkflowErrorCode

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from benefit_flow.config import Settings
    from benefit_flow.services.events import RecordingEventDispatcher
    from benefit_flow.services.results import WorkflowResult
    from benefit_flow.services.roles import InMemoryRoleProvider

EMPLOYEE_ID = uuid.uuid4()
OTHER_EMPLOYEE_ID = uuid.uuid4()
MANAGER_ID = uuid.uuid4()
SPECIAL_APPROVER_ID = uuid.uuid4()
HR_ID = uuid.uuid4()
SECOND_HR_ID = uuid.uuid4()
ACCOUNTING_ID = uuid.uuid4()
SECOND_ACCOUNTING_ID = uuid.uuid4()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _seed_roles(roles: InMemoryRoleProvider) -> None:
    roles.seed(MANAGER_ID, Role.MANAGER)
    roles.seed(SPECIAL_APPROVER_ID, Role.SPECIAL_APPROVER)
    roles.seed(HR_ID, "HR")
    roles.seed(SECOND_HR_ID, Role.HR)
    roles.seed(ACCOUNTING_ID, Role.ACCOUNTING)
    roles.seed(SECOND_ACCOUNTING_ID, Role.ACCOUNTING)


# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


async def _fund(session: AsyncSession, limit: str, benefit_category: str = "wedding") -> None:
    await ledger_store.set_ledger_limit(session, EMPLOYEE_ID, benefit_category, Decimal(limit))


async def _submit(
    session: AsyncSession,
    amount: str = "3000",
    category: str = "wedding",
    **kwargs: object,
) -> WorkflowResult:
    return await engine.submit_new_request(
        session,
        category=category,
        requester_id=EMPLOYEE_ID,
        amount=Decimal(amount),
        **kwargs,  # type: ignore[arg-type]
    )


async def _submitted_id(session: AsyncSession, amount: str = "3000", category: str = "wedding") -> uuid.UUID:
    result = await _submit(session, amount, category)
    assert result.ok, result.error
    assert result.request is not None
    return result.request.id


async def _snapshot(session: AsyncSession, benefit_category: str = "wedding") -> tuple[Decimal, Decimal, Decimal]:
    snapshot = await engine.get_ledger_snapshot(session, EMPLOYEE_ID, benefit_category)
    return snapshot.committed, snapshot.reserved, snapshot.available


async def _count(session: AsyncSession, model: type) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


async def _history(session: AsyncSession, request_id: uuid.UUID) -> list[RequestStageEvent]:
    result = await session.execute(
        select(RequestStageEvent)
        .where(col(RequestStageEvent.request_id) == request_id)
        .order_by(col(RequestStageEvent.seq))
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------


async def test_submit_reserves_budget(db_session: AsyncSession) -> None:
    """Employee with 5000 available submits 3000: reserved 3000, available 2000."""
    await _fund(db_session, "5000")
    result = await _submit(db_session, "3000")

    assert result.ok
    request = result.request
    assert request is not None
    assert request.state == "pending:manager"
    assert request.stages_json == ["manager", "hr", "accounting"]
    assert request.ledger_hold_id is not None
    assert request.submitted_at is not None
    assert await _snapshot(db_session) == (Decimal("0"), Decimal("3000"), Decimal("2000"))


async def test_submit_unknown_category_is_configuration_error(db_session: AsyncSession) -> None:
    result = await _submit(db_session, "10", category="yacht")

    assert not result.ok
    assert result.error is not None
    assert result.error.code == WorkflowErrorCode.CONFIGURATION_ERROR
    assert await _count(db_session, BenefitRequest) == 0


async def test_submit_with_insufficient_budget_persists_nothing(db_session: AsyncSession) -> None:
    await _fund(db_session, "1000")
    result = await _submit(db_session, "1000.01")

    assert result.error is not None
    assert result.error.code == WorkflowErrorCode.INSUFFICIENT_BUDGET
    assert await _count(db_session, BenefitRequest) == 0
    assert await _count(db_session, LedgerHold) == 0
    assert await _snapshot(db_session) == (Decimal("0"), Decimal("0"), Decimal("1000"))


async def test_submit_sub_cent_amount_is_invalid(db_session: AsyncSession) -> None:
    result = await _submit(db_session, "10.005")
    assert result.error is not None
    assert result.error.code == WorkflowErrorCode.INVALID_INPUT


async def test_submit_uses_default_limit_for_fresh_ledger(db_session: AsyncSession) -> None:
    """Wedding ledgers start at the configured 3000 default."""
    assert (await _submit(db_session, "3000")).ok
    assert (await _submit(db_session, "0.01")).error.code == WorkflowErrorCode.INSUFFICIENT_BUDGET  # type: ignore[union-attr]


async def test_submit_is_idempotent_per_key(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    first = await _submit(db_session, "1000", idempotency_key="wedding-2026")
    assert first.request is not None
    first_id = first.request.id
    second = await _submit(db_session, "1000", idempotency_key="wedding-2026")

    assert first.ok and second.ok
    assert second.request.id == first_id  # type: ignore[union-attr]
    assert await _count(db_session, LedgerHold) == 1
    assert await _snapshot(db_session) == (Decimal("0"), Decimal("1000"), Decimal("4000"))


async def test_submit_replay_with_different_amount_is_invalid(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    assert (await _submit(db_session, "1000", idempotency_key="wedding-2026")).ok

    result = await _submit(db_session, "2000", idempotency_key="wedding-2026")
    assert result.error is not None
    assert result.error.code == WorkflowErrorCode.INVALID_INPUT
    assert await _count(db_session, BenefitRequest) == 1
    assert await _snapshot(db_session) == (Decimal("0"), Decimal("1000"), Decimal("4000"))


async def test_submit_replay_of_draft_key_is_stale(db_session: AsyncSession) -> None:
    """A key first used for a draft cannot report a submission that never reserved budget."""
    await _fund(db_session, "5000")
    draft = await engine.create_draft(
        db_session, category="wedding", requester_id=EMPLOYEE_ID, amount=Decimal("1000"), idempotency_key="w-1"
    )
    assert draft.ok

    result = await _submit(db_session, "1000", idempotency_key="w-1")
    assert result.error is not None
    assert result.error.code == WorkflowErrorCode.STALE_STATE
    assert await _count(db_session, LedgerHold) == 0


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity", "1E+30", "1E+20"])
async def test_submit_unrepresentable_amount_is_invalid(db_session: AsyncSession, amount: str) -> None:
    result = await _submit(db_session, amount)
    assert result.error is not None
    assert result.error.code == WorkflowErrorCode.INVALID_INPUT
    assert await _count(db_session, BenefitRequest) == 0


async def test_draft_with_non_finite_amount_is_invalid(db_session: AsyncSession) -> None:
    result = await engine.create_draft(db_session, category="wedding", requester_id=EMPLOYEE_ID, amount=Decimal("NaN"))
    assert result.error.code == WorkflowErrorCode.INVALID_INPUT  # type: ignore[union-attr]


async def test_unbudgeted_category_says_no_limit_is_configured(db_session: AsyncSession) -> None:
    """Advances have no default limit; submission explains that an admin must set one."""
    result = await _submit(db_session, "100", "advance")
    assert result.error is not None
    assert result.error.code == WorkflowErrorCode.INSUFFICIENT_BUDGET
    assert "No 'advance' budget is configured" in result.error.message

    await _fund(db_session, "500", "advance")
    assert (await _submit(db_session, "100", "general_advance")).ok
    assert await _snapshot(db_session, "advance") == (Decimal("0"), Decimal("100"), Decimal("400"))


async def test_zero_amount_needs_no_configured_limit(db_session: AsyncSession) -> None:
    assert (await _submit(db_session, "0", "employment_approval")).ok


async def test_dental_and_glasses_draw_on_one_budget(db_session: AsyncSession) -> None:
    """The shared dental/glasses entitlement defaults to 2000 in total."""
    assert (await _submit(db_session, "1500", "dental")).ok

    result = await _submit(db_session, "1500", "glasses")
    assert result.error is not None
    assert result.error.code == WorkflowErrorCode.INSUFFICIENT_BUDGET
    assert await _snapshot(db_session, "dental_glasses") == (Decimal("0"), Decimal("1500"), Decimal("500"))


async def test_submit_records_history_and_event(db_session: AsyncSession, dispatcher: RecordingEventDispatcher) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session)

    history = await _history(db_session, request_id)
    assert [h.decision for h in history] == [Decision.SUBMIT]
    assert history[0].actor_id == EMPLOYEE_ID
    assert dispatcher.transitions_for(request_id) == [("draft", "pending:manager")]


async def test_high_value_request_routes_through_special_approval(db_session: AsyncSession) -> None:
    """Training at 12000 with threshold 10000 picks up special approval after the manager."""
    await _fund(db_session, "20000", "training")
    request_id = await _submitted_id(db_session, "12000", "training")

    assert (await engine.approve(db_session, request_id, MANAGER_ID)).ok
    request = (await engine.approve(db_session, request_id, SPECIAL_APPROVER_ID)).request
    assert request is not None
    assert request.stages_json == ["manager", "special_approval", "hr", "accounting"]
    assert request.state == "pending:hr"


async def test_stage_list_is_frozen_at_submission(db_session: AsyncSession, settings: Settings) -> None:
    await _fund(db_session, "20000", "training")
    request_id = await _submitted_id(db_session, "9000", "training")

    settings.special_approval_threshold = Decimal("100")
    result = await engine.approve(db_session, request_id, MANAGER_ID)
    assert result.request is not None
    assert result.request.state == "pending:hr"


# ---------------------------------------------------------------------------
# Draft flow
# ---------------------------------------------------------------------------


async def test_draft_does_not_touch_ledger(db_session: AsyncSession) -> None:
    result = await engine.create_draft(
        db_session, category="dental", requester_id=EMPLOYEE_ID, amount=Decimal("500"), payload={"clinic": "A"}
    )

    assert result.ok
    assert result.request is not None
    assert result.request.state == "draft"
    assert result.request.ledger_hold_id is None
    assert await _count(db_session, LedgerHold) == 0


async def test_draft_stays_draft_on_insufficient_budget(db_session: AsyncSession) -> None:
    draft = await engine.create_draft(db_session, category="fitness", requester_id=EMPLOYEE_ID, amount=Decimal("500"))
    assert draft.request is not None
    draft_id = draft.request.id

    result = await engine.submit_draft(db_session, draft_id, EMPLOYEE_ID)
    assert result.error is not None
    assert result.error.code == WorkflowErrorCode.INSUFFICIENT_BUDGET

    await _fund(db_session, "600", "fitness")
    result = await engine.submit_draft(db_session, draft_id, EMPLOYEE_ID)
    assert result.ok
    assert result.request.state == "pending:manager"  # type: ignore[union-attr]


async def test_submit_draft_by_other_user_is_not_owner(db_session: AsyncSession) -> None:
    draft = await engine.create_draft(db_session, category="dental", requester_id=EMPLOYEE_ID, amount=Decimal("5"))
    result = await engine.submit_draft(db_session, draft.request.id, OTHER_EMPLOYEE_ID)  # type: ignore[union-attr]
    assert result.error.code == WorkflowErrorCode.NOT_OWNER  # type: ignore[union-attr]


async def test_submit_draft_twice_is_stale(db_session: AsyncSession) -> None:
    draft = await engine.create_draft(db_session, category="dental", requester_id=EMPLOYEE_ID, amount=Decimal("5"))
    assert draft.request is not None
    draft_id = draft.request.id
    assert (await engine.submit_draft(db_session, draft_id, EMPLOYEE_ID)).ok

    result = await engine.submit_draft(db_session, draft_id, EMPLOYEE_ID)
    assert result.error.code == WorkflowErrorCode.STALE_STATE  # type: ignore[union-attr]
    assert await _count(db_session, LedgerHold) == 1


async def test_submit_missing_draft_is_not_found(db_session: AsyncSession) -> None:
    result = await engine.submit_draft(db_session, uuid.uuid4(), EMPLOYEE_ID)
    assert result.error.code == WorkflowErrorCode.NOT_FOUND  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Approve / reject
# ---------------------------------------------------------------------------


async def test_full_approval_commits_budget(db_session: AsyncSession, dispatcher: RecordingEventDispatcher) -> None:
    """Manager, HR and accounting approve: completed with 3000 committed."""
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session, "3000")

    assert (await engine.approve(db_session, request_id, MANAGER_ID)).request.state == "pending:hr"  # type: ignore[union-attr]
    assert (await engine.approve(db_session, request_id, HR_ID, note="ok")).request.state == "pending:accounting"  # type: ignore[union-attr]
    result = await engine.approve(db_session, request_id, ACCOUNTING_ID)

    assert result.ok
    assert result.request is not None
    assert result.request.state == "completed"
    assert result.request.decided_at is not None
    assert await _snapshot(db_session) == (Decimal("3000"), Decimal("0"), Decimal("2000"))

    hold = await db_session.get(LedgerHold, result.request.ledger_hold_id, populate_existing=True)
    assert hold is not None
    assert hold.state == HoldState.COMMITTED

    history = await _history(db_session, request_id)
    assert [h.decision for h in history] == ["SUBMIT", "APPROVE", "APPROVE", "APPROVE"]
    assert [h.stage for h in history] == [None, "manager", "hr", "accounting"]
    assert history[2].note == "ok"
    assert dispatcher.transitions_for(request_id) == [
        ("draft", "pending:manager"),
        ("pending:manager", "pending:hr"),
        ("pending:hr", "pending:accounting"),
        ("pending:accounting", "completed"),
    ]


async def test_approve_without_role_changes_nothing(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session)

    result = await engine.approve(db_session, request_id, HR_ID)
    assert result.error.code == WorkflowErrorCode.NOT_AUTHORIZED_FOR_STAGE  # type: ignore[union-attr]
    assert result.request is None

    request = await db_session.get(BenefitRequest, request_id, populate_existing=True)
    assert request is not None
    assert request.state == "pending:manager"
    assert len(await _history(db_session, request_id)) == 1


async def test_approve_same_stage_twice_is_stale(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session)
    assert (await engine.approve(db_session, request_id, MANAGER_ID, stage=Stage.MANAGER)).ok

    result = await engine.approve(db_session, request_id, MANAGER_ID, stage=Stage.MANAGER)
    assert result.error.code == WorkflowErrorCode.STALE_STATE  # type: ignore[union-attr]


async def test_approve_completed_request_never_double_commits(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session, "1000")
    for actor in (MANAGER_ID, HR_ID, ACCOUNTING_ID):
        assert (await engine.approve(db_session, request_id, actor)).ok

    for _ in range(2):
        result = await engine.approve(db_session, request_id, ACCOUNTING_ID)
        assert result.error.code == WorkflowErrorCode.STALE_STATE  # type: ignore[union-attr]
    assert await _snapshot(db_session) == (Decimal("1000"), Decimal("0"), Decimal("4000"))


async def test_approve_missing_request_is_not_found(db_session: AsyncSession) -> None:
    result = await engine.approve(db_session, uuid.uuid4(), MANAGER_ID)
    assert result.error.code == WorkflowErrorCode.NOT_FOUND  # type: ignore[union-attr]


async def test_reject_at_manager_releases_budget(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session, "3000")

    result = await engine.reject(db_session, request_id, MANAGER_ID, "Not eligible")

    assert result.request is not None
    assert result.request.state == "rejected:manager"
    assert await _snapshot(db_session) == (Decimal("0"), Decimal("0"), Decimal("5000"))
    history = await _history(db_session, request_id)
    assert history[-1].decision == Decision.REJECT
    assert history[-1].note == "Not eligible"

    again = await engine.approve(db_session, request_id, MANAGER_ID)
    assert again.error.code == WorkflowErrorCode.STALE_STATE  # type: ignore[union-attr]


async def test_reject_at_accounting_restores_budget(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session, "3000")
    await engine.approve(db_session, request_id, MANAGER_ID)
    await engine.approve(db_session, request_id, HR_ID)

    result = await engine.reject(db_session, request_id, ACCOUNTING_ID, "Receipt missing")
    assert result.request.state == "rejected:accounting"  # type: ignore[union-attr]
    assert await _snapshot(db_session) == (Decimal("0"), Decimal("0"), Decimal("5000"))


async def test_reject_requires_reason(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session)
    result = await engine.reject(db_session, request_id, MANAGER_ID, "   ")
    assert result.error.code == WorkflowErrorCode.INVALID_INPUT  # type: ignore[union-attr]


async def test_submit_then_reject_round_trip_leaves_ledger_unchanged(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    before = await _snapshot(db_session)
    for amount in ("100", "2500.50", "5000"):
        request_id = await _submitted_id(db_session, amount)
        await engine.reject(db_session, request_id, MANAGER_ID, "No")
    assert await _snapshot(db_session) == before


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


async def test_cancel_pending_releases_budget(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session, "3000")
    await engine.approve(db_session, request_id, MANAGER_ID)

    result = await engine.cancel(db_session, request_id, EMPLOYEE_ID)
    assert result.request.state == "cancelled"  # type: ignore[union-attr]
    assert await _snapshot(db_session) == (Decimal("0"), Decimal("0"), Decimal("5000"))


async def test_cancel_draft(db_session: AsyncSession) -> None:
    draft = await engine.create_draft(db_session, category="dental", requester_id=EMPLOYEE_ID, amount=Decimal("5"))
    result = await engine.cancel(db_session, draft.request.id, EMPLOYEE_ID)  # type: ignore[union-attr]
    assert result.request.state == "cancelled"  # type: ignore[union-attr]


async def test_cancel_at_final_stage_is_refused(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session, "3000")
    await engine.approve(db_session, request_id, MANAGER_ID)
    await engine.approve(db_session, request_id, HR_ID)

    result = await engine.cancel(db_session, request_id, EMPLOYEE_ID)
    assert result.error.code == WorkflowErrorCode.NOT_CANCELLABLE  # type: ignore[union-attr]
    assert await _snapshot(db_session) == (Decimal("0"), Decimal("3000"), Decimal("2000"))


async def test_cancel_by_other_user_is_not_owner(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session)
    result = await engine.cancel(db_session, request_id, OTHER_EMPLOYEE_ID)
    assert result.error.code == WorkflowErrorCode.NOT_OWNER  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


async def test_concurrent_approvals_exactly_one_wins(
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: RecordingEventDispatcher,
) -> None:
    """Two HR approvers race on the same pending:hr request."""
    async with session_factory() as setup:
        await _fund(setup, "5000")
        request_id = await _submitted_id(setup)
        await engine.approve(setup, request_id, MANAGER_ID)

    async def _approve_as(actor_id: uuid.UUID) -> WorkflowResult:
        async with session_factory() as session:
            return await engine.approve(session, request_id, actor_id, stage=Stage.HR)

    results = await asyncio.gather(_approve_as(HR_ID), _approve_as(SECOND_HR_ID))

    assert sorted(r.ok for r in results) == [False, True]
    loser = next(r for r in results if not r.ok)
    assert loser.error.code == WorkflowErrorCode.STALE_STATE  # type: ignore[union-attr]

    async with session_factory() as check:
        history = await _history(check, request_id)
        assert [h.stage for h in history].count("hr") == 1
        request = await check.get(BenefitRequest, request_id)
        assert request is not None
        assert request.state == "pending:accounting"
    assert dispatcher.transitions_for(request_id).count(("pending:hr", "pending:accounting")) == 1


async def test_concurrent_approve_and_reject_at_final_stage(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Approve and reject race on pending:accounting; the hold ends either committed or released."""
    async with session_factory() as setup:
        await _fund(setup, "5000")
        request_id = await _submitted_id(setup)
        await engine.approve(setup, request_id, MANAGER_ID)
        await engine.approve(setup, request_id, HR_ID)

    async def _approve() -> WorkflowResult:
        async with session_factory() as session:
            return await engine.approve(session, request_id, ACCOUNTING_ID, stage=Stage.ACCOUNTING)

    async def _reject() -> WorkflowResult:
        async with session_factory() as session:
            return await engine.reject(session, request_id, SECOND_ACCOUNTING_ID, "duplicate", stage=Stage.ACCOUNTING)

    approved, rejected = await asyncio.gather(_approve(), _reject())

    assert sorted([approved.ok, rejected.ok]) == [False, True]
    loser = rejected if approved.ok else approved
    assert loser.error.code == WorkflowErrorCode.STALE_STATE  # type: ignore[union-attr]

    async with session_factory() as check:
        request = await check.get(BenefitRequest, request_id)
        assert request is not None
        hold = await check.get(LedgerHold, request.ledger_hold_id)
        assert hold is not None
        snapshot = await _snapshot(check)
    if approved.ok:
        assert request.state == "completed"
        assert hold.state == HoldState.COMMITTED
        assert snapshot == (Decimal("3000"), Decimal("0"), Decimal("2000"))
    else:
        assert request.state == "rejected:accounting"
        assert hold.state == HoldState.RELEASED
        assert snapshot == (Decimal("0"), Decimal("0"), Decimal("5000"))


async def test_concurrent_submits_never_overdraw_the_ledger(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> None:
    """Five 1500 submissions race for a 5000 budget; at most three can reserve."""
    settings.max_transition_retries = 20
    async with session_factory() as setup:
        await _fund(setup, "5000")

    async def _submit_one() -> WorkflowResult:
        async with session_factory() as session:
            return await _submit(session, "1500")

    results = await asyncio.gather(*(_submit_one() for _ in range(5)))

    accepted = [r for r in results if r.ok]
    assert len(accepted) <= 3
    for failed in (r for r in results if not r.ok):
        assert failed.error.code in {WorkflowErrorCode.INSUFFICIENT_BUDGET, WorkflowErrorCode.CONTENTION}  # type: ignore[union-attr]

    async with session_factory() as check:
        committed, reserved, available = await _snapshot(check)
        assert committed == Decimal("0")
        assert reserved == Decimal("1500") * len(accepted)
        assert available >= 0
        assert await _count(check, LedgerHold) == len(accepted)
        assert await _count(check, BenefitRequest) == len(accepted)


async def test_persistent_conflicts_surface_as_contention(
    db_session: AsyncSession,
    settings: Settings,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """When every attempt loses its CAS the engine gives up without writing anything."""
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session)
    await engine.approve(db_session, request_id, MANAGER_ID)
    await engine.approve(db_session, request_id, HR_ID)

    attempts = 0

    async def _always_conflicts(session: AsyncSession, hold_id: uuid.UUID | None) -> ledger_store.LedgerOutcome:
        nonlocal attempts
        attempts += 1
        return ledger_store.LedgerOutcome.CONFLICT

    settings.max_transition_retries = 3
    monkeypatch.setattr(ledger_store, "commit_hold", _always_conflicts)

    result = await engine.approve(db_session, request_id, ACCOUNTING_ID)

    assert result.error.code == WorkflowErrorCode.CONTENTION  # type: ignore[union-attr]
    assert attempts == 3
    request = await db_session.get(BenefitRequest, request_id, populate_existing=True)
    assert request is not None
    assert request.state == "pending:accounting"
    assert await _snapshot(db_session) == (Decimal("0"), Decimal("3000"), Decimal("2000"))


# ---------------------------------------------------------------------------
# Transition events
# ---------------------------------------------------------------------------


class _FailingDispatcher:
    def __init__(self) -> None:
        self.calls = 0

    async def on_transition(self, **kwargs: object) -> None:
        self.calls += 1
        msg = "sink unavailable"
        raise ConnectionError(msg)


async def test_dispatch_failure_does_not_roll_back_transition(db_session: AsyncSession) -> None:
    from benefit_flow.services.events import set_event_dispatcher

    await _fund(db_session, "5000")
    failing = _FailingDispatcher()
    set_event_dispatcher(failing)  # type: ignore[arg-type]

    result = await _submit(db_session)

    assert result.ok
    assert failing.calls == 1
    result = await db_session.execute(select(TransitionEvent).execution_options(populate_existing=True))
    event = result.scalar_one()
    assert event.delivered_at is None
    assert event.attempts == 1


async def test_undelivered_events_are_redelivered(
    db_session: AsyncSession,
    dispatcher: RecordingEventDispatcher,
) -> None:
    from benefit_flow.services.events import redeliver_pending_events, set_event_dispatcher

    await _fund(db_session, "5000")
    set_event_dispatcher(_FailingDispatcher())  # type: ignore[arg-type]
    request_id = await _submitted_id(db_session)
    await engine.approve(db_session, request_id, MANAGER_ID)

    set_event_dispatcher(dispatcher)
    delivered = await redeliver_pending_events(db_session)

    assert delivered == 2
    assert dispatcher.transitions_for(request_id) == [
        ("draft", "pending:manager"),
        ("pending:manager", "pending:hr"),
    ]
    assert await redeliver_pending_events(db_session) == 0


async def test_every_transition_writes_one_outbox_row(db_session: AsyncSession) -> None:
    await _fund(db_session, "5000")
    request_id = await _submitted_id(db_session)
    await engine.approve(db_session, request_id, MANAGER_ID)
    await engine.reject(db_session, request_id, HR_ID, "Duplicate claim")

    result = await db_session.execute(
        select(TransitionEvent)
        .where(col(TransitionEvent.request_id) == request_id)
        .order_by(col(TransitionEvent.occurred_at))
        .execution_options(populate_existing=True)
    )
    events = result.scalars().all()
    assert [(e.from_state, e.to_state) for e in events] == [
        ("draft", "pending:manager"),
        ("pending:manager", "pending:hr"),
        ("pending:hr", "rejected:hr"),
    ]
    assert all(e.delivered_at is not None for e in events)
