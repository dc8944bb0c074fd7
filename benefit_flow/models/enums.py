from __future__ import annotations

import enum


class RequestCategory(enum.StrEnum):
    """Kind of request an employee files; selects the stage sequence."""

    WEDDING = "wedding"
    TRAINING = "training"
    CHILDBIRTH = "childbirth"
    FUNERAL = "funeral"
    GLASSES = "glasses"
    DENTAL = "dental"
    MEDICAL = "medical"
    FITNESS = "fitness"
    INTERNAL_TRAINING = "internal_training"
    ADVANCE = "advance"
    GENERAL_ADVANCE = "general_advance"
    EXPENSE_CLEARING = "expense_clearing"
    GENERAL_EXPENSE_CLEARING = "general_expense_clearing"
    EMPLOYMENT_APPROVAL = "employment_approval"


class Stage(enum.StrEnum):
    """Role-gated checkpoint in an approval sequence."""

    MANAGER = "manager"
    SPECIAL_APPROVAL = "special_approval"
    HR = "hr"
    ACCOUNTING = "accounting"


class Role(enum.StrEnum):
    """Capability an actor can hold."""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    SPECIAL_APPROVER = "special_approver"
    HR = "hr"
    ACCOUNTING = "accounting"
    ADMIN = "admin"


class StateKind(enum.StrEnum):
    """Tag of a workflow state; stage-bearing kinds carry a Stage."""

    DRAFT = "draft"
    PENDING = "pending"
    REVISION_REQUESTED = "revision_requested"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Decision(enum.StrEnum):
    """Entry kind recorded in a request's stage history."""

    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REQUEST_REVISION = "REQUEST_REVISION"
    RESUBMIT = "RESUBMIT"
    CANCEL = "CANCEL"


class HoldState(enum.StrEnum):
    """Lifecycle of a ledger hold."""

    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    RELEASED = "RELEASED"


class LedgerAction(enum.StrEnum):
    """Ledger side effect attached to a transition."""

    NONE = "NONE"
    RESERVE = "RESERVE"
    COMMIT = "COMMIT"
    RELEASE = "RELEASE"
