"""FastAPI route definitions for the conversational action agent API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from src.agent import run_turn
from src.api.schemas import (
    ActionCompleteRequest,
    ActionFailRequest,
    ActionResponse,
    ActionStatusUpdate,
    ChatRequest,
    ChatResponse,
    ConversationResponse,
    HealthResponse,
    PendingActionView,
)
from src.context import AppContext
from src.services.action_store import (
    ActionNotFoundError,
    ActionStoreError,
    ActionTransitionError,
    PersistedAction,
)
from src.services.conversation_store import ConversationStoreError
from src.state import ActionStatus, message_text, update_action_status

logger = logging.getLogger(__name__)

router = APIRouter()

_INTERNAL_ERROR = "An internal error occurred. Please try again."


def _get_pipeline(request: Request):
    """Retrieve the pipeline built during the FastAPI lifespan (see ``server.py``)."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return pipeline


def _get_context(request: Request) -> AppContext:
    ctx = getattr(request.app.state, "context", None)
    if ctx is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return ctx


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "?")


async def _load_action(ctx: AppContext, action_id: str, request_id: str) -> PersistedAction:
    try:
        action = await ctx.action_store.get(action_id)
    except ActionStoreError as e:
        logger.exception("[%s] Failed to load action %s", request_id, action_id)
        raise HTTPException(status_code=500, detail=_INTERNAL_ERROR) from e
    if action is None:
        raise HTTPException(status_code=404, detail=f"Action not found: {action_id}")
    return action


async def _transition(
    ctx: AppContext,
    action_id: str,
    statuses: list[ActionStatus],
    request_id: str,
    *,
    result: dict | None = None,
    error: str | None = None,
) -> PersistedAction:
    """Apply *statuses* in order to the stored action and mirror them onto its conversation."""
    try:
        for i, status in enumerate(statuses):
            last = i == len(statuses) - 1
            await ctx.action_store.update_status(
                action_id, status,
                result=result if last else None,
                error=error if last else None,
            )
    except ActionNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Action not found: {action_id}") from e
    except ActionTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ActionStoreError as e:
        logger.exception("[%s] Failed to update action %s", request_id, action_id)
        raise HTTPException(status_code=500, detail=_INTERNAL_ERROR) from e

    action = await _load_action(ctx, action_id, request_id)
    await _sync_conversation(ctx, action.conversation_id, action_id, statuses, request_id)
    return action


async def _sync_conversation(
    ctx: AppContext,
    conversation_id: str,
    action_id: str,
    statuses: list[ActionStatus],
    request_id: str,
) -> None:
    """Best effort: the durable action is the source of truth."""
    try:
        state = await ctx.conversation_store.get(conversation_id)
        if state is None:
            return
        updated = state
        for status in statuses:
            updated = update_action_status(updated, action_id, status)
        if updated is not state:
            await ctx.conversation_store.put(updated)
    except ConversationStoreError:
        logger.warning(
            "[%s] Could not mirror action %s onto conversation %s",
            request_id, action_id, conversation_id,
        )


# ── Health ───────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: Request):
    """Health check endpoint."""
    pipeline = getattr(http_request.app.state, "pipeline", None)
    return HealthResponse(pipeline=getattr(pipeline, "name", None))


# ── Chat ─────────────────────────────────────────────────────────────


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send a message to the agent and get a response.

    Pipeline failures never surface here: the pipeline always answers,
    apologetically if need be.  Only conversation storage failures end
    in a 500.
    """
    pipeline = _get_pipeline(http_request)
    ctx = _get_context(http_request)
    request_id = _request_id(http_request)

    try:
        state = await run_turn(
            pipeline, ctx.conversation_store, request.message, request.conversation_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except Exception as e:
        # Full traceback stays server-side
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(status_code=500, detail=_INTERNAL_ERROR) from e

    messages = state["messages"]
    if not messages or messages[-1].type != "ai":
        logger.error("[%s] Pipeline returned no assistant message", request_id)
        raise HTTPException(status_code=500, detail="Agent produced no response.")

    return ChatResponse(
        reply=message_text(messages[-1]),
        conversation_id=state["conversation_id"],
        actions=[PendingActionView.from_pending(a) for a in state["pending_actions"]],
    )


# ── Conversations ────────────────────────────────────────────────────


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(conversation_id: str, http_request: Request):
    ctx = _get_context(http_request)
    try:
        state = await ctx.conversation_store.get(conversation_id)
    except ConversationStoreError as e:
        logger.exception("[%s] Failed to load conversation %s", _request_id(http_request), conversation_id)
        raise HTTPException(status_code=500, detail=_INTERNAL_ERROR) from e
    if state is None:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return ConversationResponse.from_state(state)


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, http_request: Request):
    ctx = _get_context(http_request)
    try:
        state = await ctx.conversation_store.get(conversation_id)
        if state is None:
            raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
        await ctx.conversation_store.delete(conversation_id)
    except ConversationStoreError as e:
        logger.exception("[%s] Failed to delete conversation %s", _request_id(http_request), conversation_id)
        raise HTTPException(status_code=500, detail=_INTERNAL_ERROR) from e
    return {"deleted": True, "conversation_id": conversation_id}


# ── Actions ──────────────────────────────────────────────────────────


@router.get("/actions/conversation/{conversation_id}", response_model=list[ActionResponse])
async def list_conversation_actions(conversation_id: str, http_request: Request):
    ctx = _get_context(http_request)
    try:
        actions = await ctx.action_store.list_for_conversation(conversation_id)
    except ActionStoreError as e:
        logger.exception("[%s] Failed to list actions for %s", _request_id(http_request), conversation_id)
        raise HTTPException(status_code=500, detail=_INTERNAL_ERROR) from e
    return [ActionResponse.from_persisted(a) for a in actions]


@router.get("/actions/{action_id}", response_model=ActionResponse)
async def get_action(action_id: str, http_request: Request):
    ctx = _get_context(http_request)
    action = await _load_action(ctx, action_id, _request_id(http_request))
    return ActionResponse.from_persisted(action)


@router.put("/actions/{action_id}", response_model=ActionResponse)
async def update_action(action_id: str, update: ActionStatusUpdate, http_request: Request):
    """Set an action's status.  Illegal transitions answer 409."""
    ctx = _get_context(http_request)
    action = await _transition(
        ctx, action_id, [ActionStatus(update.status)], _request_id(http_request),
        result=update.result, error=update.error,
    )
    return ActionResponse.from_persisted(action)


@router.post("/actions/{action_id}/complete", response_model=ActionResponse)
async def complete_action(
    action_id: str, http_request: Request, body: ActionCompleteRequest | None = None,
):
    """Mark an action completed, claiming it first if it is still pending."""
    ctx = _get_context(http_request)
    request_id = _request_id(http_request)
    current = await _load_action(ctx, action_id, request_id)

    statuses = [ActionStatus.COMPLETED]
    if current.status == ActionStatus.PENDING:
        statuses.insert(0, ActionStatus.IN_PROGRESS)
    action = await _transition(
        ctx, action_id, statuses, request_id, result=body.result if body else None,
    )
    return ActionResponse.from_persisted(action)


@router.post("/actions/{action_id}/cancel", response_model=ActionResponse)
async def cancel_action(action_id: str, http_request: Request):
    ctx = _get_context(http_request)
    action = await _transition(
        ctx, action_id, [ActionStatus.CANCELLED], _request_id(http_request),
    )
    return ActionResponse.from_persisted(action)


@router.post("/actions/{action_id}/fail", response_model=ActionResponse)
async def fail_action(
    action_id: str, http_request: Request, body: ActionFailRequest | None = None,
):
    """Mark an action failed with an optional error message."""
    ctx = _get_context(http_request)
    error = body.error if body else ActionFailRequest().error
    action = await _transition(
        ctx, action_id, [ActionStatus.FAILED], _request_id(http_request), error=error,
    )
    return ActionResponse.from_persisted(action)
