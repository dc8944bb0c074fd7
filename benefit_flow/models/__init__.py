from sqlmodel import SQLModel

from benefit_flow.models.base import TimestampMixin, UUIDBase, VersionedMixin
from benefit_flow.models.enums import (
    Decision,
    HoldState,
    LedgerAction,
    RequestCategory,
    Role,
    Stage,
    StateKind,
)
from benefit_flow.models.ledger import BudgetLedger, LedgerHold
from benefit_flow.models.outbox import TransitionEvent
from benefit_flow.models.request import BenefitRequest, RequestStageEvent

__all__ = [
    "BenefitRequest",
    "BudgetLedger",
    "Decision",
    "HoldState",
    "LedgerAction",
    "LedgerHold",
    "RequestCategory",
    "RequestStageEvent",
    "Role",
    "SQLModel",
    "Stage",
    "StateKind",
    "TimestampMixin",
    "TransitionEvent",
    "UUIDBase",
    "VersionedMixin",
]
