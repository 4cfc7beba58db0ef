"""Response generation stage.

Builds the prompt from a bounded history window, the retrieved context and
(optionally) a summary of executed actions, calls the conversational model
once and appends its reply as an ``ai`` message.  A model failure of any kind
appends a fixed apology instead; this stage never raises for it.
"""

from __future__ import annotations

import json
import logging
import time

from langchain_core.messages import BaseMessage

from src.config import MAX_HISTORY_LENGTH
from src.conversation import add_ai_message, format_chat_history, get_message_history
from src.prompts import (
    GENERATION_FALLBACK_REPLY,
    NO_CONTEXT_PLACEHOLDER,
    NO_HISTORY_REPLY,
    create_rag_prompt,
    get_system_prompt,
)
from src.services.metrics import metrics
from src.state import (
    ActionStatus,
    ConversationState,
    PendingAction,
    actions_with_status,
    get_context_block,
    message_text,
)

logger = logging.getLogger(__name__)


def build_action_summary(state: ConversationState) -> str:
    """Summarize resolved actions as ``Completed``/``Failed`` groups.

    Returns ``""`` when no action has completed or failed.
    """

    def _lines(actions: list[PendingAction]) -> list[str]:
        return [f"- {a['type']}: {json.dumps(a['data'], default=str)}" for a in actions]

    sections = []
    completed = actions_with_status(state, ActionStatus.COMPLETED)
    failed = actions_with_status(state, ActionStatus.FAILED)
    if completed:
        sections.append("\n".join(["Completed actions:", *_lines(completed)]))
    if failed:
        sections.append("\n".join(["Failed actions:", *_lines(failed)]))
    return "\n\n".join(sections)


def _latest_input(history: list[BaseMessage]) -> str:
    for message in reversed(history):
        if isinstance(message, BaseMessage) and message.type == "human":
            return message_text(message)
    last = history[-1]
    return message_text(last) if isinstance(last, BaseMessage) else ""


def make_generation_node(
    chat_model,
    *,
    with_action_summary: bool = False,
    system_prompt: str | None = None,
    history_limit: int = MAX_HISTORY_LENGTH,
):
    """Create a response generation node.

    Args:
        chat_model: Any LangChain chat model (``ainvoke`` on a prompt value).
        with_action_summary: Append completed/failed actions to the context.
        system_prompt: Replace the default RAG system prompt verbatim.
        history_limit: How many recent messages go into the prompt.
    """
    prompt = create_rag_prompt()
    operation = "generate_with_actions" if with_action_summary else "generate"

    async def generate_node(state: ConversationState) -> ConversationState:
        conversation_id = state["conversation_id"]
        history = get_message_history(state, history_limit)
        if not history:
            logger.warning("[%s] No message history found", conversation_id)
            return add_ai_message(state, NO_HISTORY_REPLY)

        context = get_context_block(state) or NO_CONTEXT_PLACEHOLDER
        if with_action_summary:
            summary = build_action_summary(state)
            if summary:
                context = f"{context}\n\nAction summary:\n{summary}"

        t0 = time.perf_counter()
        try:
            prompt_value = await prompt.ainvoke(
                {
                    "system_prompt": system_prompt or get_system_prompt(),
                    "chat_history": format_chat_history(history),
                    "context": context,
                    "input": _latest_input(history),
                }
            )
            response = await chat_model.ainvoke(prompt_value)
            reply = message_text(response).strip()
            if not reply:
                raise ValueError("Model returned an empty response")
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", operation, error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.error(
                "[%s] Error generating response (%d messages): %s",
                conversation_id, len(state["messages"]), exc,
            )
            return add_ai_message(state, GENERATION_FALLBACK_REPLY)

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", operation, latency_ms=elapsed)
        logger.info("[%s] Response generated in %.0fms", conversation_id, elapsed)
        return add_ai_message(state, reply)

    return generate_node
