from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from benefit_flow.api.health import router as health_router
from benefit_flow.api.router import api_router
from benefit_flow.config import get_settings
from benefit_flow.db import dispose_engine
from benefit_flow.exceptions import setup_exception_handlers
from benefit_flow.logging_config import setup_logging
from benefit_flow.middleware import setup_middleware

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup and shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting %s v%s [%s]", settings.app_name, settings.app_version, settings.environment)
    yield
    logger.info("Shutting down %s", settings.app_name)
    await dispose_engine()


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    setup_middleware(application, settings)
    setup_exception_handlers(application)

    application.include_router(health_router)
    application.include_router(api_router)

    return application


app = create_app()


def run() -> None:
    """Serve the API with uvicorn (local development)."""
    import uvicorn

    settings = get_settings()
    host = "0.0.0.0" if settings.environment == "production" else "127.0.0.1"
    uvicorn.run("benefit_flow.main:app", host=host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
