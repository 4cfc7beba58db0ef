"""Background action processor.

Drains ``pending`` actions from the durable store in batches, for actions
that were persisted but not executed in-request (a restricted pipeline
variant, a crash between extraction and execution, or actions created
through another channel).  Each action goes through ``run_action``, so the
timeout, claim and status rules are identical to the in-pipeline stage.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from src.config import ACTION_TIMEOUT_SECONDS, WORKER_BATCH_SIZE, WORKER_INTERVAL_SECONDS
from src.services.action_store import ActionStore
from src.state import ActionStatus
from src.tools.executor import run_action
from src.tools.handlers import ActionHandler

logger = logging.getLogger(__name__)


class ActionProcessor:
    def __init__(
        self,
        store: ActionStore,
        handlers: Mapping[str, ActionHandler],
        timeout: float = ACTION_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._handlers = handlers
        self._timeout = timeout

    async def process_batch(self, batch_size: int = WORKER_BATCH_SIZE) -> dict[str, int]:
        """Execute up to *batch_size* pending actions concurrently.

        Returns ``{"processed", "succeeded", "failed"}`` counts.  Actions
        whose claim is rejected (another executor got there first) count
        as neither succeeded nor failed.
        """
        pending = await self._store.list_pending(batch_size)
        if not pending:
            return {"processed": 0, "succeeded": 0, "failed": 0}

        logger.info("Processing %d pending action(s)", len(pending))
        outcomes = await asyncio.gather(
            *(
                run_action(
                    action.id, action.type, action.data,
                    handlers=self._handlers, store=self._store, timeout=self._timeout,
                )
                for action in pending
            )
        )

        succeeded = sum(1 for o in outcomes if o.claimed and o.final_status is ActionStatus.COMPLETED)
        failed = sum(1 for o in outcomes if o.claimed and o.final_status is ActionStatus.FAILED)
        stats = {"processed": len(pending), "succeeded": succeeded, "failed": failed}
        logger.info("Action batch done: %s", stats)
        return stats

    async def run_forever(
        self,
        interval: float = WORKER_INTERVAL_SECONDS,
        batch_size: int = WORKER_BATCH_SIZE,
    ) -> None:
        """Poll until cancelled.  A failing batch is logged and retried next tick."""
        logger.info("Action worker started (interval=%gs, batch=%d)", interval, batch_size)
        while True:
            try:
                await self.process_batch(batch_size)
            except Exception:
                logger.exception("Action batch failed")
            await asyncio.sleep(interval)
