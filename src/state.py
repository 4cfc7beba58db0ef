"""Conversation state threaded through every pipeline stage.

Stages never mutate a state in place.  Each reducer below takes a state and
returns a *new* dict, sharing the untouched fields with the input::

    state = add_message(state, HumanMessage(content="hi"))
    state = set_context(state, ["[1] ..."])

``messages`` holds LangChain ``HumanMessage`` / ``AIMessage`` /
``SystemMessage`` instances.  Their ``type`` tag is fixed at construction and
is the only thing used to tell roles apart, both in prompts and when the
state is rebuilt from storage.
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Any

from langchain_core.messages import (
    AnyMessage,
    BaseMessage,
    HumanMessage,
    messages_from_dict,
    messages_to_dict,
)
from typing_extensions import TypedDict

logger = logging.getLogger(__name__)


# ── Action status lifecycle ──────────────────────────────────────────


class ActionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.CANCELLED}
)

# pending → failed is needed when no handler exists for the action type
LEGAL_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING: frozenset(
        {ActionStatus.IN_PROGRESS, ActionStatus.FAILED, ActionStatus.CANCELLED}
    ),
    ActionStatus.IN_PROGRESS: frozenset(
        {ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.CANCELLED}
    ),
    ActionStatus.COMPLETED: frozenset(),
    ActionStatus.FAILED: frozenset(),
    ActionStatus.CANCELLED: frozenset(),
}


def can_transition(current: ActionStatus | str, new: ActionStatus | str) -> bool:
    """Return ``True`` if moving from *current* to *new* is a legal transition."""
    try:
        current, new = ActionStatus(current), ActionStatus(new)
    except ValueError:
        return False
    return new in LEGAL_TRANSITIONS[current]


# ── State schema ─────────────────────────────────────────────────────


class PendingAction(TypedDict):
    """Lightweight in-state view of an action.

    ``id`` is the id assigned by the durable action store, so the same
    identifier is used for extraction, persistence and execution.
    """

    id: str
    type: str
    data: dict[str, Any]
    status: str


class ConversationState(TypedDict):
    """The state that flows through the graph.

    ``context`` is a per-turn scratchpad that every retrieval overwrites.
    ``pending_actions`` may carry over between turns until resolved.
    """

    conversation_id: str
    messages: list[AnyMessage]
    context: list[str]
    pending_actions: list[PendingAction]


def new_conversation_id() -> str:
    return f"conv_{uuid.uuid4()}"


def create_state(conversation_id: str | None = None) -> ConversationState:
    """Return an empty state for a brand-new conversation."""
    return {
        "conversation_id": conversation_id or new_conversation_id(),
        "messages": [],
        "context": [],
        "pending_actions": [],
    }


# ── Reducers ─────────────────────────────────────────────────────────


def add_message(state: ConversationState, message: BaseMessage) -> ConversationState:
    return {**state, "messages": [*state["messages"], message]}


def set_context(state: ConversationState, context: list[str]) -> ConversationState:
    return {**state, "context": list(context)}


def add_action(state: ConversationState, action: PendingAction) -> ConversationState:
    return {**state, "pending_actions": [*state["pending_actions"], action]}


def update_action_status(
    state: ConversationState,
    action_id: str,
    status: ActionStatus,
) -> ConversationState:
    """Move one pending action to *status*.

    Illegal transitions (e.g. ``completed → pending``) are ignored and
    logged; the returned state is then the input state.
    """
    updated: list[PendingAction] = []
    changed = False
    for action in state["pending_actions"]:
        if action["id"] != action_id:
            updated.append(action)
            continue
        if not can_transition(action["status"], status):
            logger.warning(
                "Ignoring illegal transition %s → %s for action %s",
                action["status"], ActionStatus(status).value, action_id,
            )
            updated.append(action)
            continue
        updated.append({**action, "status": ActionStatus(status).value})
        changed = True

    if not changed:
        return state
    return {**state, "pending_actions": updated}


def clear_actions(state: ConversationState) -> ConversationState:
    return {**state, "pending_actions": []}


# ── Accessors ────────────────────────────────────────────────────────


def get_last_human_message(state: ConversationState) -> HumanMessage | None:
    """Scan backwards for the most recent message with the ``human`` role."""
    for message in reversed(state["messages"]):
        if isinstance(message, BaseMessage) and message.type == "human":
            return message
    return None


def message_text(message: BaseMessage) -> str:
    """Plain text of a message, joining text blocks when content is a list."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def get_context_block(state: ConversationState) -> str:
    return "\n\n".join(state["context"])


def actions_with_status(
    state: ConversationState, status: ActionStatus,
) -> list[PendingAction]:
    return [a for a in state["pending_actions"] if a["status"] == status.value]


# ── (De)serialization ────────────────────────────────────────────────


def state_to_dict(state: ConversationState) -> dict[str, Any]:
    """Convert a state into a JSON-serialisable dict."""
    return {
        "conversation_id": state["conversation_id"],
        "messages": messages_to_dict(state["messages"]),
        "context": list(state["context"]),
        "pending_actions": [dict(a) for a in state["pending_actions"]],
    }


def state_from_dict(data: dict[str, Any]) -> ConversationState:
    """Rebuild a state produced by :func:`state_to_dict`.

    Messages are restored from their ``type`` discriminator; missing
    collections default to empty.
    """
    return {
        "conversation_id": data["conversation_id"],
        "messages": messages_from_dict(data.get("messages") or []),
        "context": list(data.get("context") or []),
        "pending_actions": [
            {
                "id": a["id"],
                "type": a["type"],
                "data": dict(a.get("data") or {}),
                "status": ActionStatus(a["status"]).value,
            }
            for a in data.get("pending_actions") or []
        ],
    }
