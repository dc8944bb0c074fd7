from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from benefit_flow.logging_config import setup_logging

if TYPE_CHECKING:
    from collections.abc import Iterator

    from httpx import AsyncClient

    from benefit_flow.config import Settings


@pytest.fixture(autouse=True)
def _restore_package_level() -> Iterator[None]:
    package_logger = logging.getLogger("benefit_flow")
    previous = package_logger.level
    yield
    package_logger.setLevel(previous)


def test_setup_logging_uses_explicit_level() -> None:
    setup_logging("debug")
    assert logging.getLogger("benefit_flow").level == logging.DEBUG


def test_setup_logging_defaults_to_settings(settings: Settings) -> None:
    settings.log_level = "WARNING"
    setup_logging()
    assert logging.getLogger("benefit_flow").level == logging.WARNING


async def test_requests_are_access_logged(async_client: AsyncClient, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="benefit_flow.access"):
        response = await async_client.get("/health")
    assert "X-Process-Time" in response.headers
    assert "GET /health -> 200" in caplog.text
