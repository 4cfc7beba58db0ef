"""Action extraction stage: turn the latest user message into at most one pending action.

Flow for one turn:

    last human message
        → function-calling model (tools = registry schemas)
        → at most one selected tool + JSON arguments
        → parse → validate against the registry
        → persist (status=pending) → append PendingAction to state

Every failure along the way (model error, unparsable arguments, invalid
arguments, store error) leaves the state exactly as it was.  Arguments that
fail validation are never persisted nor added to state.
"""

from __future__ import annotations

import json
import logging

from src.services.action_store import ActionStore
from src.services.llm import ToolSelector
from src.state import (
    ActionStatus,
    ConversationState,
    PendingAction,
    add_action,
    get_last_human_message,
    message_text,
)
from src.tools.registry import ActionRegistry

logger = logging.getLogger(__name__)


def make_extraction_node(
    selector: ToolSelector,
    registry: ActionRegistry,
    store: ActionStore,
    *,
    action_types: list[str] | None = None,
):
    """Create the extraction node.

    With *action_types* only that subset of the registry is offered to the
    model, which makes a narrower intent detector with the same algorithm.
    """
    tools = registry.tool_definitions(action_types)
    offered = {tool["name"] for tool in tools}

    async def extract_actions_node(state: ConversationState) -> ConversationState:
        conversation_id = state["conversation_id"]
        last_human = get_last_human_message(state)
        if last_human is None or not last_human.content:
            logger.debug("[%s] No human message found, skipping action extraction", conversation_id)
            return state

        try:
            selected = await selector.select(message_text(last_human), tools)
        except Exception as exc:
            logger.error("[%s] Error extracting actions: %s", conversation_id, exc)
            return state

        if selected is None:
            logger.debug("[%s] No action detected", conversation_id)
            return state

        if selected.name not in offered:
            logger.warning(
                "[%s] Model selected tool %r which was not offered", conversation_id, selected.name,
            )
            return state

        try:
            args = json.loads(selected.arguments_json)
        except (TypeError, ValueError) as exc:
            logger.error("[%s] Error parsing arguments for %s: %s", conversation_id, selected.name, exc)
            return state

        validation = registry.validate(selected.name, args)
        if not validation.valid:
            logger.warning(
                "[%s] Discarding invalid %s action: %s",
                conversation_id, selected.name, "; ".join(validation.errors),
            )
            return state

        data = registry.apply_defaults(selected.name, args)
        try:
            persisted = await store.create(conversation_id, selected.name, data)
        except Exception as exc:
            logger.error("[%s] Failed to persist %s action: %s", conversation_id, selected.name, exc)
            return state

        pending: PendingAction = {
            "id": persisted.id,
            "type": selected.name,
            "data": data,
            "status": ActionStatus.PENDING.value,
        }
        logger.info("[%s] Extracted %s action %s", conversation_id, selected.name, persisted.id)
        return add_action(state, pending)

    return extract_actions_node
