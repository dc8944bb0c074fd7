from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

if TYPE_CHECKING:
    from benefit_flow.services.results import WorkflowError

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Body returned for every handled error."""

    error: str
    detail: str | None = None
    status_code: int


class AppError(Exception):
    """Error raised by services and dependencies; rendered with its status code."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def error_name(self) -> str:
        return type(self).__name__


class WorkflowFailure(AppError):
    """HTTP rendering of a typed engine failure."""

    _STATUS_BY_CODE: dict[str, int] = {
        "CONFIGURATION_ERROR": status.HTTP_400_BAD_REQUEST,
        "INSUFFICIENT_BUDGET": status.HTTP_400_BAD_REQUEST,
        "INVALID_INPUT": status.HTTP_400_BAD_REQUEST,
        "REVISION_INCOMPLETE": status.HTTP_400_BAD_REQUEST,
        "NOT_AUTHORIZED_FOR_STAGE": status.HTTP_403_FORBIDDEN,
        "NOT_OWNER": status.HTTP_403_FORBIDDEN,
        "NOT_FOUND": status.HTTP_404_NOT_FOUND,
        "STALE_STATE": status.HTTP_409_CONFLICT,
        "NOT_CANCELLABLE": status.HTTP_409_CONFLICT,
        "CONTENTION": status.HTTP_409_CONFLICT,
    }

    def __init__(self, error: WorkflowError) -> None:
        self.code = error.code.value
        super().__init__(error.message, status_code=self._STATUS_BY_CODE.get(self.code, 400))

    @property
    def error_name(self) -> str:
        return self.code


def _render(exc_name: str, detail: str | None, status_code: int) -> JSONResponse:
    body = ErrorResponse(error=exc_name, detail=detail, status_code=status_code)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _app_exception_handler(request: Request, exc: AppError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level, "%s %s -> %d %s: %s", request.method, request.url.path, exc.status_code, exc.error_name, exc.message
    )
    return _render(exc.error_name, exc.message, exc.status_code)


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _render("ValidationError", str(exc.errors()), status.HTTP_422_UNPROCESSABLE_ENTITY)


def setup_exception_handlers(app: FastAPI) -> None:
    """Render AppError and request validation failures as ErrorResponse bodies."""
    app.add_exception_handler(AppError, _app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)  # type: ignore[arg-type]
