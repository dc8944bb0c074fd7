"""Workflow definition table and the special-approval router.

Every request category maps to a ledger bucket and an ordered list of
required stages. Conditional stages are evaluated once, when a request is
submitted, and the resolved list is frozen onto the request so later policy
changes never reorder in-flight requests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from benefit_flow.config import get_settings
from benefit_flow.models.enums import RequestCategory, Role, Stage

if TYPE_CHECKING:
    from collections.abc import Callable
    from decimal import Decimal

    from benefit_flow.config import Settings


@dataclass(frozen=True)
class StageContext:
    """Facts a stage condition may inspect."""

    category: str
    amount: Decimal
    settings: Settings


@dataclass(frozen=True)
class RequiredStage:
    """One checkpoint in a definition."""

    stage: Stage
    role: Role
    condition: Callable[[StageContext], bool] | None = None
    revision_requires_attachments: bool = True

    def applies_to(self, context: StageContext) -> bool:
        return self.condition is None or self.condition(context)


@dataclass(frozen=True)
class WorkflowDefinition:
    """Stage sequence and ledger bucket for a request category."""

    category: RequestCategory
    benefit_category: str
    stages: tuple[RequiredStage, ...]

    def resolve(self, amount: Decimal, settings: Settings | None = None) -> list[Stage]:
        """Return the concrete stage list for a request of this category."""
        context = StageContext(category=self.category.value, amount=amount, settings=settings or get_settings())
        return [required.stage for required in self.stages if required.applies_to(context)]

    def required_stage(self, stage: Stage) -> RequiredStage | None:
        for required in self.stages:
            if required.stage == stage:
                return required
        return None


def needs_special_approval(category: str, amount: Decimal, settings: Settings | None = None) -> bool:
    """Whether a request must pass the extra high-value approval stage."""
    settings = settings or get_settings()
    return category in settings.special_approval_categories and amount > settings.special_approval_threshold


def _special_approval_condition(context: StageContext) -> bool:
    return needs_special_approval(context.category, context.amount, context.settings)


# ---------------------------------------------------------------------------
# Stage sequences
# ---------------------------------------------------------------------------

_MANAGER = RequiredStage(Stage.MANAGER, Role.MANAGER, revision_requires_attachments=False)
_SPECIAL_APPROVAL = RequiredStage(Stage.SPECIAL_APPROVAL, Role.SPECIAL_APPROVER, condition=_special_approval_condition)
_HR = RequiredStage(Stage.HR, Role.HR)
_ACCOUNTING = RequiredStage(Stage.ACCOUNTING, Role.ACCOUNTING)

FULL_WELFARE_FLOW = (_MANAGER, _SPECIAL_APPROVAL, _HR, _ACCOUNTING)
ACCOUNTING_ONLY_FLOW = (_MANAGER, _ACCOUNTING)
HR_FLOW = (_MANAGER, _HR)

_WELFARE = (
    RequestCategory.WEDDING,
    RequestCategory.TRAINING,
    RequestCategory.CHILDBIRTH,
    RequestCategory.FUNERAL,
    RequestCategory.GLASSES,
    RequestCategory.DENTAL,
    RequestCategory.MEDICAL,
    RequestCategory.FITNESS,
    RequestCategory.INTERNAL_TRAINING,
)

# Categories that draw on another category's budget bucket.
_SHARED_BUCKETS: dict[RequestCategory, str] = {
    RequestCategory.GLASSES: "dental_glasses",
    RequestCategory.DENTAL: "dental_glasses",
}

WORKFLOW_DEFINITIONS: dict[RequestCategory, WorkflowDefinition] = {
    **{
        category: WorkflowDefinition(
            category, benefit_category=_SHARED_BUCKETS.get(category, category.value), stages=FULL_WELFARE_FLOW
        )
        for category in _WELFARE
    },
    RequestCategory.ADVANCE: WorkflowDefinition(RequestCategory.ADVANCE, "advance", ACCOUNTING_ONLY_FLOW),
    RequestCategory.GENERAL_ADVANCE: WorkflowDefinition(
        RequestCategory.GENERAL_ADVANCE, "advance", ACCOUNTING_ONLY_FLOW
    ),
    RequestCategory.EXPENSE_CLEARING: WorkflowDefinition(
        RequestCategory.EXPENSE_CLEARING, "expense_clearing", ACCOUNTING_ONLY_FLOW
    ),
    RequestCategory.GENERAL_EXPENSE_CLEARING: WorkflowDefinition(
        RequestCategory.GENERAL_EXPENSE_CLEARING, "expense_clearing", ACCOUNTING_ONLY_FLOW
    ),
    RequestCategory.EMPLOYMENT_APPROVAL: WorkflowDefinition(
        RequestCategory.EMPLOYMENT_APPROVAL, "employment_approval", HR_FLOW
    ),
}

STAGE_ROLES: dict[Stage, Role] = {
    Stage.MANAGER: Role.MANAGER,
    Stage.SPECIAL_APPROVAL: Role.SPECIAL_APPROVER,
    Stage.HR: Role.HR,
    Stage.ACCOUNTING: Role.ACCOUNTING,
}


def get_definition(category: str) -> WorkflowDefinition | None:
    """Look up the definition for a category name. None when unknown."""
    try:
        key = RequestCategory(category)
    except ValueError:
        return None
    return WORKFLOW_DEFINITIONS.get(key)


def resolve_stages(category: str, amount: Decimal, settings: Settings | None = None) -> list[Stage] | None:
    """Resolve the stage list for a category, or None for an unknown category."""
    definition = get_definition(category)
    if definition is None:
        return None
    return definition.resolve(amount, settings)
