"""Tagged workflow states and the pure transition rules between them.

Nothing here touches the database. Each ``plan_*`` function looks at the
current state, the request's frozen stage list and the caller's facts, and
returns either a ``TransitionPlan`` for the engine to execute or a
``WorkflowError`` explaining why the transition is not allowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from benefit_flow.models.enums import Decision, LedgerAction, Role, Stage, StateKind
from benefit_flow.services.results import WorkflowError, WorkflowErrorCode
from benefit_flow.services.workflow import STAGE_ROLES

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

_STAGED_KINDS = frozenset({StateKind.PENDING, StateKind.REVISION_REQUESTED, StateKind.REJECTED})
_TERMINAL_KINDS = frozenset({StateKind.COMPLETED, StateKind.REJECTED, StateKind.CANCELLED})


@dataclass(frozen=True)
class WorkflowState:
    """A state tag plus, for pending/revision/rejected states, the stage it refers to."""

    kind: StateKind
    stage: Stage | None = None

    def __post_init__(self) -> None:
        if (self.kind in _STAGED_KINDS) != (self.stage is not None):
            msg = f"State {self.kind} {'requires' if self.kind in _STAGED_KINDS else 'does not take'} a stage"
            raise ValueError(msg)

    @classmethod
    def parse(cls, value: str) -> WorkflowState:
        """Parse the stored form, e.g. ``pending:hr`` or ``completed``."""
        kind_text, _, stage_text = value.partition(":")
        kind = StateKind(kind_text)
        return cls(kind, Stage(stage_text) if stage_text else None)

    def __str__(self) -> str:
        if self.stage is None:
            return self.kind.value
        return f"{self.kind.value}:{self.stage.value}"

    @property
    def is_terminal(self) -> bool:
        return self.kind in _TERMINAL_KINDS


DRAFT = WorkflowState(StateKind.DRAFT)
COMPLETED = WorkflowState(StateKind.COMPLETED)
CANCELLED = WorkflowState(StateKind.CANCELLED)


def pending(stage: Stage) -> WorkflowState:
    return WorkflowState(StateKind.PENDING, stage)


def revision_requested(stage: Stage) -> WorkflowState:
    return WorkflowState(StateKind.REVISION_REQUESTED, stage)


def rejected(stage: Stage) -> WorkflowState:
    return WorkflowState(StateKind.REJECTED, stage)


@dataclass(frozen=True)
class TransitionPlan:
    """What the engine must write for one transition."""

    from_state: WorkflowState
    to_state: WorkflowState
    decision: Decision
    stage: Stage | None
    ledger_action: LedgerAction = LedgerAction.NONE


def _error(code: WorkflowErrorCode, message: str) -> WorkflowError:
    return WorkflowError(code=code, message=message)


def _stale(state: WorkflowState, expected: str) -> WorkflowError:
    return _error(WorkflowErrorCode.STALE_STATE, f"Request is {state}, expected {expected}")


def check_stage_action(
    state: WorkflowState,
    stages: Sequence[Stage],
    stage: Stage | None,
    roles: Collection[Role],
) -> WorkflowError | None:
    """Shared precondition of approve, reject and request-revision.

    The stage must belong to the request's sequence, the actor must hold the
    stage's role and the request must currently be pending at that stage.
    """
    if stage is None or stage not in stages:
        return _stale(state, "a pending stage")
    required_role = STAGE_ROLES[stage]
    if required_role not in roles:
        return _error(
            WorkflowErrorCode.NOT_AUTHORIZED_FOR_STAGE,
            f"Role '{required_role}' is required to act on stage '{stage}'",
        )
    if state != pending(stage):
        return _stale(state, str(pending(stage)))
    return None


def plan_submit(state: WorkflowState, stages: Sequence[Stage]) -> TransitionPlan | WorkflowError:
    if state != DRAFT:
        return _stale(state, str(DRAFT))
    if not stages:
        return _error(WorkflowErrorCode.CONFIGURATION_ERROR, "Resolved stage sequence is empty")
    return TransitionPlan(
        from_state=state,
        to_state=pending(stages[0]),
        decision=Decision.SUBMIT,
        stage=None,
        ledger_action=LedgerAction.RESERVE,
    )


def plan_approve(
    state: WorkflowState,
    stages: Sequence[Stage],
    stage: Stage | None,
    roles: Collection[Role],
) -> TransitionPlan | WorkflowError:
    error = check_stage_action(state, stages, stage, roles)
    if error is not None:
        return error
    assert stage is not None
    index = list(stages).index(stage)
    if index == len(stages) - 1:
        return TransitionPlan(state, COMPLETED, Decision.APPROVE, stage, LedgerAction.COMMIT)
    return TransitionPlan(state, pending(stages[index + 1]), Decision.APPROVE, stage)


def plan_reject(
    state: WorkflowState,
    stages: Sequence[Stage],
    stage: Stage | None,
    roles: Collection[Role],
) -> TransitionPlan | WorkflowError:
    error = check_stage_action(state, stages, stage, roles)
    if error is not None:
        return error
    assert stage is not None
    return TransitionPlan(state, rejected(stage), Decision.REJECT, stage, LedgerAction.RELEASE)


def plan_request_revision(
    state: WorkflowState,
    stages: Sequence[Stage],
    stage: Stage | None,
    roles: Collection[Role],
) -> TransitionPlan | WorkflowError:
    error = check_stage_action(state, stages, stage, roles)
    if error is not None:
        return error
    assert stage is not None
    return TransitionPlan(state, revision_requested(stage), Decision.REQUEST_REVISION, stage)


def plan_resubmit(
    state: WorkflowState,
    *,
    is_owner: bool,
    attachments_required: bool,
    new_attachment_count: int,
) -> TransitionPlan | WorkflowError:
    """Return to the stage that asked for the revision, never to the first stage."""
    if not is_owner:
        return _error(WorkflowErrorCode.NOT_OWNER, "Only the requester can resubmit this request")
    if state.kind != StateKind.REVISION_REQUESTED or state.stage is None:
        return _stale(state, "revision_requested:<stage>")
    if attachments_required and new_attachment_count == 0:
        return _error(
            WorkflowErrorCode.REVISION_INCOMPLETE,
            f"Stage '{state.stage}' requested additional attachments",
        )
    return TransitionPlan(state, pending(state.stage), Decision.RESUBMIT, state.stage)


def plan_cancel(
    state: WorkflowState,
    stages: Sequence[Stage],
    *,
    is_owner: bool,
) -> TransitionPlan | WorkflowError:
    """Cancel from draft, or from a pending stage that is not the final one."""
    if not is_owner:
        return _error(WorkflowErrorCode.NOT_OWNER, "Only the requester can cancel this request")
    if state == DRAFT:
        return TransitionPlan(state, CANCELLED, Decision.CANCEL, None)
    if state.kind == StateKind.PENDING and stages and state.stage != stages[-1]:
        return TransitionPlan(state, CANCELLED, Decision.CANCEL, state.stage, LedgerAction.RELEASE)
    return _error(WorkflowErrorCode.NOT_CANCELLABLE, f"Request cannot be cancelled while {state}")


def actionable_states(roles: Collection[Role]) -> list[str]:
    """Stored state strings an actor with these roles can act on."""
    return [str(pending(stage)) for stage, role in STAGE_ROLES.items() if role in roles]
