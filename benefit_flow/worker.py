"""Worker process for transition event redelivery.

Transitions record an outbox row in the same transaction as the state
change and are dispatched right after commit. Rows whose dispatch failed,
or whose process died before dispatching, are picked up here.
"""

from __future__ import annotations

import asyncio
import logging

from benefit_flow.config import get_settings
from benefit_flow.db import get_session_factory
from benefit_flow.logging_config import setup_logging
from benefit_flow.services.events import redeliver_pending_events

logger = logging.getLogger(__name__)


async def run_once() -> int:
    """Drain one batch of undelivered transition events."""
    settings = get_settings()
    async with get_session_factory()() as session:
        return await redeliver_pending_events(session, batch_size=settings.outbox_batch_size)


async def run_redelivery_loop() -> None:
    """Main worker loop that redelivers pending transition events."""
    settings = get_settings()
    logger.info("Outbox worker started (interval=%ds)", settings.outbox_redelivery_interval_seconds)

    while True:
        try:
            delivered = await run_once()
            if delivered:
                logger.info("Outbox run complete: delivered=%d", delivered)
        except Exception:
            logger.exception("Outbox redelivery run failed")

        await asyncio.sleep(settings.outbox_redelivery_interval_seconds)


def main() -> None:
    """Entry point for the worker process."""
    setup_logging()
    asyncio.run(run_redelivery_loop())


if __name__ == "__main__":
    main()
