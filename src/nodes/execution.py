"""Action execution stage: run every ``pending`` action in the state.

Actions run concurrently; each is isolated, so one failing or timing out
never blocks or rolls back another.  Actions in any other status are left
alone.  The returned state mirrors every transition that was made.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from src.config import ACTION_TIMEOUT_SECONDS
from src.services.action_store import ActionStore
from src.state import ActionStatus, ConversationState, update_action_status
from src.tools.executor import run_action
from src.tools.handlers import ActionHandler

logger = logging.getLogger(__name__)


def make_execution_node(
    handlers: Mapping[str, ActionHandler],
    store: ActionStore,
    *,
    timeout: float = ACTION_TIMEOUT_SECONDS,
    action_types: list[str] | None = None,
):
    """Create the execution node.

    With *action_types* only pending actions of those types are executed;
    the rest stay pending for another executor.
    """
    wanted = set(action_types) if action_types is not None else None

    async def execute_actions_node(state: ConversationState) -> ConversationState:
        conversation_id = state["conversation_id"]
        targets = [
            action
            for action in state["pending_actions"]
            if action["status"] == ActionStatus.PENDING.value
            and (wanted is None or action["type"] in wanted)
        ]
        if not targets:
            logger.debug("[%s] No pending actions to execute", conversation_id)
            return state

        logger.info("[%s] Executing %d pending action(s)", conversation_id, len(targets))
        outcomes = await asyncio.gather(
            *(
                run_action(
                    action["id"], action["type"], action["data"],
                    handlers=handlers, store=store, timeout=timeout,
                )
                for action in targets
            )
        )

        updated = state
        for outcome in outcomes:
            for status in outcome.transitions:
                updated = update_action_status(updated, outcome.action_id, status)
        return updated

    return execute_actions_node
