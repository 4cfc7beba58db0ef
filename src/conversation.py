"""Conversation memory helpers: adding messages, history windows, transcripts."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from src.config import MAX_HISTORY_LENGTH
from src.state import ConversationState, add_message

logger = logging.getLogger(__name__)

_ROLE_LABELS = {"human": "Human", "ai": "Assistant"}


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def _append(
    state: ConversationState,
    message_cls: type[BaseMessage],
    content: str,
) -> ConversationState:
    if not content or not content.strip():
        logger.warning(
            "[%s] Ignoring empty %s message",
            state["conversation_id"], message_cls.__name__,
        )
        return state
    message = message_cls(content=content, additional_kwargs={"timestamp": _timestamp()})
    return add_message(state, message)


def add_human_message(state: ConversationState, content: str) -> ConversationState:
    return _append(state, HumanMessage, content)


def add_ai_message(state: ConversationState, content: str) -> ConversationState:
    return _append(state, AIMessage, content)


def add_system_message(state: ConversationState, content: str) -> ConversationState:
    return _append(state, SystemMessage, content)


def message_timestamp(message: BaseMessage) -> str | None:
    return message.additional_kwargs.get("timestamp")


def get_message_history(
    state: ConversationState,
    limit: int = MAX_HISTORY_LENGTH,
) -> list[BaseMessage]:
    """Return the most recent *limit* messages (oldest first)."""
    if limit <= 0:
        return []
    return list(state["messages"][-limit:])


def format_message(message: BaseMessage) -> str:
    """Render one message as ``"<Role>: <content>"``.

    Raises ``TypeError`` for anything that is not a readable text message.
    """
    if not isinstance(message, BaseMessage):
        raise TypeError(f"Not a message: {type(message).__name__}")
    if not isinstance(message.content, str):
        raise TypeError(f"Unsupported {message.type} message content")
    label = _ROLE_LABELS.get(message.type, "System")
    return f"{label}: {message.content}"


def format_chat_history(messages: list[BaseMessage]) -> str:
    """Format messages into a role-labelled transcript.

    A message that cannot be read is skipped rather than failing the
    whole transcript.
    """
    lines: list[str] = []
    for message in messages:
        try:
            lines.append(format_message(message))
        except Exception as exc:
            logger.warning("Skipping unreadable message in history: %s", exc)
    return "\n\n".join(lines)


def get_formatted_message_history(
    state: ConversationState,
    limit: int = MAX_HISTORY_LENGTH,
) -> str:
    return format_chat_history(get_message_history(state, limit))


def clear_conversation_history(state: ConversationState) -> ConversationState:
    logger.debug("[%s] Clearing conversation history", state["conversation_id"])
    return {**state, "messages": []}


async def summarize_conversation_history(
    state: ConversationState,
    summarizer: Callable[[str], Awaitable[str]],
    limit: int = MAX_HISTORY_LENGTH,
) -> ConversationState:
    """Compress a long history into a summary plus the most recent messages.

    Histories no longer than *limit* are returned unchanged.  Otherwise the
    whole transcript is passed to *summarizer* and the messages are replaced
    by a single system summary followed by the last ``limit // 2`` messages.
    """
    if len(state["messages"]) <= limit:
        return state

    logger.debug(
        "[%s] Summarizing %d messages", state["conversation_id"], len(state["messages"]),
    )
    transcript = format_chat_history(state["messages"])
    summary = await summarizer(transcript)

    keep = limit // 2
    recent = state["messages"][-keep:] if keep else []
    summary_message = SystemMessage(
        content=f"Previous conversation summary: {summary}",
        additional_kwargs={"timestamp": _timestamp()},
    )
    return {**state, "messages": [summary_message, *recent]}
