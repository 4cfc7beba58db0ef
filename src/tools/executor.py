"""Execute one action: claim it, run its handler with a timeout, record the outcome.

Used both by the in-pipeline execution stage and by the background worker,
so an action goes through the same lifecycle however it is picked up::

    pending ──claim──▶ in_progress ──handler──▶ completed | failed

``run_action`` never raises for handler or store problems.  It returns the
list of statuses it moved the action through so the caller can mirror them
onto the in-memory conversation state.  When another executor owns the
action, those statuses lead to whatever the durable record already says.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from src.config import ACTION_TIMEOUT_SECONDS
from src.services.action_store import ActionStore, ActionTransitionError
from src.services.metrics import metrics
from src.state import ActionStatus
from src.tools.handlers import ActionHandler, ActionResult

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error"


@dataclass
class ActionOutcome:
    action_id: str
    transitions: list[ActionStatus] = field(default_factory=list)
    result: dict[str, Any] | None = None
    error: str | None = None
    # False when another executor owns the action; transitions then mirror its stored status
    claimed: bool = True

    @property
    def final_status(self) -> ActionStatus | None:
        return self.transitions[-1] if self.transitions else None


# Path from pending to a status somebody else already reached
_ADOPTED_PATHS: dict[ActionStatus, list[ActionStatus]] = {
    ActionStatus.PENDING: [],
    ActionStatus.IN_PROGRESS: [ActionStatus.IN_PROGRESS],
    ActionStatus.COMPLETED: [ActionStatus.IN_PROGRESS, ActionStatus.COMPLETED],
    ActionStatus.FAILED: [ActionStatus.IN_PROGRESS, ActionStatus.FAILED],
    ActionStatus.CANCELLED: [ActionStatus.CANCELLED],
}


async def _adopt_stored_status(store: ActionStore, outcome: ActionOutcome) -> None:
    """Fill *outcome* from the durable record of an action we failed to claim."""
    try:
        stored = await store.get(outcome.action_id)
    except Exception:
        logger.exception("Failed to load action %s after a lost claim", outcome.action_id)
        return
    if stored is None:
        return
    status = ActionStatus(stored.status)
    outcome.transitions = list(_ADOPTED_PATHS[status])
    outcome.result = stored.result
    outcome.error = stored.error


async def _persist(
    store: ActionStore,
    action_id: str,
    status: ActionStatus,
    *,
    result: dict[str, Any] | None = None,
    error: str | None = None,
) -> None:
    """Write a status change, logging (not raising) on store failure.

    The durable store is at-least-once; a failed write is retried by the
    layer above, so execution carries on with the in-memory state.
    """
    try:
        await store.update_status(action_id, status, result=result, error=error)
    except Exception:
        logger.exception("Failed to persist status %s for action %s", status.value, action_id)


async def run_action(
    action_id: str,
    action_type: str,
    payload: dict[str, Any],
    *,
    handlers: Mapping[str, ActionHandler],
    store: ActionStore,
    timeout: float = ACTION_TIMEOUT_SECONDS,
) -> ActionOutcome:
    """Run a single ``pending`` action to completion or failure."""
    outcome = ActionOutcome(action_id)

    handler = handlers.get(action_type)
    if handler is None:
        outcome.error = f"No handler for action type: {action_type}"
        logger.warning("Action %s: %s", action_id, outcome.error)
        outcome.transitions.append(ActionStatus.FAILED)
        await _persist(store, action_id, ActionStatus.FAILED, error=outcome.error)
        metrics.record_action_outcome(action_type, ActionStatus.FAILED.value)
        return outcome

    # Claim the action durably first so a crash leaves a visible in-progress marker
    try:
        await store.mark_in_progress(action_id)
    except ActionTransitionError as exc:
        logger.warning("Action %s already claimed elsewhere (%s); skipping", action_id, exc.current)
        outcome.claimed = False
        await _adopt_stored_status(store, outcome)
        return outcome
    except Exception:
        logger.exception("Failed to persist in_progress for action %s", action_id)
    outcome.transitions.append(ActionStatus.IN_PROGRESS)

    t0 = time.perf_counter()
    try:
        result = await asyncio.wait_for(handler(dict(payload)), timeout=timeout)
        if not isinstance(result, ActionResult):
            raise TypeError(f"Handler returned {type(result).__name__}, expected ActionResult")
    except TimeoutError:
        result = ActionResult(False, error=f"Action execution timed out after {timeout:g}s")
    except Exception as exc:
        logger.exception("Handler for action %s (%s) raised", action_id, action_type)
        result = ActionResult(False, error=str(exc) or type(exc).__name__)
    elapsed = (time.perf_counter() - t0) * 1000

    if result.success:
        outcome.result = result.result
        outcome.transitions.append(ActionStatus.COMPLETED)
        await _persist(store, action_id, ActionStatus.COMPLETED, result=result.result)
        logger.info("Action %s (%s) completed in %.0fms", action_id, action_type, elapsed)
    else:
        outcome.error = result.error or UNKNOWN_ERROR
        outcome.transitions.append(ActionStatus.FAILED)
        await _persist(store, action_id, ActionStatus.FAILED, error=outcome.error)
        logger.warning("Action %s (%s) failed: %s", action_id, action_type, outcome.error)

    metrics.record_action_outcome(action_type, outcome.transitions[-1].value, latency_ms=elapsed)
    return outcome
