"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any, Literal

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, Field, field_validator

from src.conversation import message_timestamp
from src.services.action_store import PersistedAction
from src.state import ConversationState, PendingAction, message_text


class ChatRequest(BaseModel):
    """Incoming chat message from the frontend."""

    message: str = Field(..., min_length=1, max_length=4000, description="The user's message")
    conversation_id: str | None = Field(
        None,
        min_length=1,
        max_length=100,
        description="Existing conversation to continue; omit to start a new one",
    )

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v


class MessageView(BaseModel):
    role: str
    content: str
    timestamp: str | None = None

    @classmethod
    def from_message(cls, message: BaseMessage) -> MessageView:
        return cls(role=message.type, content=message_text(message), timestamp=message_timestamp(message))


class PendingActionView(BaseModel):
    id: str
    type: str
    data: dict[str, Any]
    status: str

    @classmethod
    def from_pending(cls, action: PendingAction) -> PendingActionView:
        return cls(**action)


class ChatResponse(BaseModel):
    """Response from the agent."""

    reply: str = Field(..., description="The agent's response message")
    conversation_id: str = Field(..., description="The conversation this turn belongs to")
    actions: list[PendingActionView] = Field(default_factory=list)


class ConversationResponse(BaseModel):
    conversation_id: str
    messages: list[MessageView]
    context: list[str]
    pending_actions: list[PendingActionView]

    @classmethod
    def from_state(cls, state: ConversationState) -> ConversationResponse:
        return cls(
            conversation_id=state["conversation_id"],
            messages=[MessageView.from_message(m) for m in state["messages"]],
            context=list(state["context"]),
            pending_actions=[PendingActionView.from_pending(a) for a in state["pending_actions"]],
        )


class ActionResponse(BaseModel):
    id: str
    conversation_id: str
    type: str
    status: str
    data: dict[str, Any]
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: str
    updated_at: str

    @classmethod
    def from_persisted(cls, action: PersistedAction) -> ActionResponse:
        return cls(**action.model_dump(mode="json"))


class ActionStatusUpdate(BaseModel):
    """Manual status change for an action (e.g. from an operator console)."""

    status: Literal["in_progress", "completed", "failed", "cancelled"]
    result: dict[str, Any] | None = None
    error: str | None = None


class ActionCompleteRequest(BaseModel):
    result: dict[str, Any] | None = None


class ActionFailRequest(BaseModel):
    error: str = Field("Action failed", min_length=1, max_length=2000)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "rag-action-agent"
    pipeline: str | None = None
