"""Typed outcomes returned by the workflow engine.

Expected business outcomes (insufficient budget, a stale view of the
request, a missing role) are values, not exceptions. Callers branch on
``result.ok`` or on ``result.error.code``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from benefit_flow.models.request import BenefitRequest


class WorkflowErrorCode(enum.StrEnum):
    """Machine-readable failure codes."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INSUFFICIENT_BUDGET = "INSUFFICIENT_BUDGET"
    NOT_AUTHORIZED_FOR_STAGE = "NOT_AUTHORIZED_FOR_STAGE"
    STALE_STATE = "STALE_STATE"
    CONTENTION = "CONTENTION"
    REVISION_INCOMPLETE = "REVISION_INCOMPLETE"
    NOT_OWNER = "NOT_OWNER"
    NOT_CANCELLABLE = "NOT_CANCELLABLE"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"


@dataclass(frozen=True)
class WorkflowError:
    """A failure code with a human-readable message."""

    code: WorkflowErrorCode
    message: str


@dataclass(frozen=True)
class WorkflowResult:
    """Outcome of an engine operation: the request on success, an error otherwise."""

    request: BenefitRequest | None = None
    error: WorkflowError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, request: BenefitRequest) -> WorkflowResult:
        return cls(request=request)

    @classmethod
    def failure(
        cls,
        code: WorkflowErrorCode,
        message: str,
        request: BenefitRequest | None = None,
    ) -> WorkflowResult:
        return cls(request=request, error=WorkflowError(code=code, message=message))

    @classmethod
    def from_error(cls, error: WorkflowError, request: BenefitRequest | None = None) -> WorkflowResult:
        return cls(request=request, error=error)
