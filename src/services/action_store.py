"""Durable action store.

Every extracted action is persisted here before it enters the in-memory
conversation state, and every status change made by the executor is
written back.  Two implementations share one async contract:

* :class:`InMemoryActionStore` — process-local, used for development/tests.
* :class:`DynamoActionStore` — DynamoDB table keyed on ``id`` (boto3).  The
  ``data``/``result`` payloads are stored as JSON strings so arbitrary
  numbers survive without ``Decimal`` conversion.  Listing by conversation
  requires a ``conversationId-index`` GSI.

Status updates are validated against the lifecycle in ``src.state``: an
illegal transition raises :class:`ActionTransitionError` and nothing is
written.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from src.state import LEGAL_TRANSITIONS, ActionStatus, can_transition

logger = logging.getLogger(__name__)


class ActionStoreError(Exception):
    """Raised when the backing store cannot be read or written."""


class ActionTransitionError(ActionStoreError):
    """Raised when a status update would break the action lifecycle."""

    def __init__(self, action_id: str, current: str | None, new: str):
        self.action_id = action_id
        self.current = current
        self.new = new
        super().__init__(f"Illegal status transition for {action_id}: {current} → {new}")


class ActionNotFoundError(ActionStoreError):
    """Raised when updating an action id that does not exist."""


class PersistedAction(BaseModel):
    """Durable record of an action."""

    id: str
    conversation_id: str
    type: str
    status: ActionStatus = ActionStatus.PENDING
    data: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: str
    updated_at: str


def _now() -> str:
    return datetime.now(UTC).isoformat()


def new_action_id() -> str:
    return f"act_{uuid.uuid4()}"


class ActionStore(ABC):
    """Async contract for durable action storage."""

    @abstractmethod
    async def create(self, conversation_id: str, action_type: str, data: dict[str, Any]) -> PersistedAction:
        """Persist a new ``pending`` action and return it (with its id)."""

    @abstractmethod
    async def get(self, action_id: str) -> PersistedAction | None: ...

    @abstractmethod
    async def update_status(
        self,
        action_id: str,
        status: ActionStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        """Move an action to *status*, recording *result* / *error*."""

    @abstractmethod
    async def list_pending(self, limit: int = 50) -> list[PersistedAction]: ...

    @abstractmethod
    async def list_for_conversation(self, conversation_id: str) -> list[PersistedAction]: ...

    # ── Convenience wrappers ─────────────────────────────────────────

    async def mark_in_progress(self, action_id: str) -> None:
        await self.update_status(action_id, ActionStatus.IN_PROGRESS)

    async def mark_completed(self, action_id: str, result: dict[str, Any] | None) -> None:
        await self.update_status(action_id, ActionStatus.COMPLETED, result=result)

    async def mark_failed(self, action_id: str, error: str) -> None:
        await self.update_status(action_id, ActionStatus.FAILED, error=error)

    async def close(self) -> None:  # noqa: B027 — optional hook
        """Release backend resources (no-op by default)."""


# ── In-memory ────────────────────────────────────────────────────────


class InMemoryActionStore(ActionStore):
    """Dict-backed store.  Each method runs without awaiting, so updates are atomic."""

    def __init__(self) -> None:
        self._actions: dict[str, PersistedAction] = {}

    async def create(self, conversation_id: str, action_type: str, data: dict[str, Any]) -> PersistedAction:
        now = _now()
        action = PersistedAction(
            id=new_action_id(),
            conversation_id=conversation_id,
            type=action_type,
            data=dict(data),
            created_at=now,
            updated_at=now,
        )
        self._actions[action.id] = action
        logger.debug("Created action %s (%s)", action.id, action_type)
        return action.model_copy(deep=True)

    async def get(self, action_id: str) -> PersistedAction | None:
        action = self._actions.get(action_id)
        return action.model_copy(deep=True) if action else None

    async def update_status(
        self,
        action_id: str,
        status: ActionStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        action = self._actions.get(action_id)
        if action is None:
            raise ActionNotFoundError(f"Action not found: {action_id}")
        if not can_transition(action.status, status):
            raise ActionTransitionError(action_id, action.status.value, ActionStatus(status).value)

        self._actions[action_id] = action.model_copy(
            update={
                "status": ActionStatus(status),
                "result": result,
                "error": error,
                "updated_at": _now(),
            }
        )
        logger.debug("Action %s → %s", action_id, ActionStatus(status).value)

    async def list_pending(self, limit: int = 50) -> list[PersistedAction]:
        pending = [a for a in self._actions.values() if a.status == ActionStatus.PENDING]
        pending.sort(key=lambda a: a.created_at)
        return [a.model_copy(deep=True) for a in pending[:limit]]

    async def list_for_conversation(self, conversation_id: str) -> list[PersistedAction]:
        actions = [a for a in self._actions.values() if a.conversation_id == conversation_id]
        actions.sort(key=lambda a: a.created_at)
        return [a.model_copy(deep=True) for a in actions]


# ── DynamoDB ─────────────────────────────────────────────────────────


class DynamoActionStore(ActionStore):
    """DynamoDB-backed store.  boto3 is synchronous, so calls run in a thread."""

    def __init__(self, table_name: str, region: str, *, table=None) -> None:
        if table is None:
            import boto3  # noqa: PLC0415 — lazy import keeps boto3 optional for the memory backend

            table = boto3.resource("dynamodb", region_name=region).Table(table_name)
        self._table = table
        self._table_name = table_name

    @staticmethod
    def _to_item(action: PersistedAction) -> dict[str, Any]:
        return {
            "id": action.id,
            "conversationId": action.conversation_id,
            "type": action.type,
            "status": action.status.value,
            "data": json.dumps(action.data),
            "result": json.dumps(action.result) if action.result is not None else None,
            "error": action.error,
            "createdAt": action.created_at,
            "updatedAt": action.updated_at,
        }

    @staticmethod
    def _from_item(item: dict[str, Any]) -> PersistedAction:
        return PersistedAction(
            id=item["id"],
            conversation_id=item["conversationId"],
            type=item["type"],
            status=ActionStatus(item["status"]),
            data=json.loads(item.get("data") or "{}"),
            result=json.loads(item["result"]) if item.get("result") else None,
            error=item.get("error"),
            created_at=item["createdAt"],
            updated_at=item["updatedAt"],
        )

    async def _call(self, operation: str, fn, **kwargs) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except Exception as exc:
            if _is_conditional_check_failure(exc):
                raise
            logger.error("DynamoDB %s on %s failed: %s", operation, self._table_name, exc)
            raise ActionStoreError(f"Failed to {operation}: {exc}") from exc

    async def create(self, conversation_id: str, action_type: str, data: dict[str, Any]) -> PersistedAction:
        now = _now()
        action = PersistedAction(
            id=new_action_id(),
            conversation_id=conversation_id,
            type=action_type,
            data=dict(data),
            created_at=now,
            updated_at=now,
        )
        await self._call("create action", self._table.put_item, Item=self._to_item(action))
        return action

    async def get(self, action_id: str) -> PersistedAction | None:
        resp = await self._call("get action", self._table.get_item, Key={"id": action_id})
        item = resp.get("Item")
        return self._from_item(item) if item else None

    async def update_status(
        self,
        action_id: str,
        status: ActionStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        status = ActionStatus(status)
        # Only statuses that may legally move to ``status`` satisfy the condition
        allowed = [s.value for s, targets in LEGAL_TRANSITIONS.items() if status in targets]
        placeholders = {f":from{i}": value for i, value in enumerate(allowed)}
        if not placeholders:
            raise ActionTransitionError(action_id, None, status.value)

        try:
            await self._call(
                "update action status",
                self._table.update_item,
                Key={"id": action_id},
                UpdateExpression=(
                    "SET #status = :status, updatedAt = :updatedAt, #result = :result, #error = :error"
                ),
                ConditionExpression=(
                    f"attribute_exists(id) AND #status IN ({', '.join(placeholders)})"
                ),
                ExpressionAttributeNames={"#status": "status", "#result": "result", "#error": "error"},
                ExpressionAttributeValues={
                    ":status": status.value,
                    ":updatedAt": _now(),
                    ":result": json.dumps(result) if result is not None else None,
                    ":error": error,
                    **placeholders,
                },
            )
        except Exception as exc:
            if not _is_conditional_check_failure(exc):
                raise
            current = await self.get(action_id)
            if current is None:
                raise ActionNotFoundError(f"Action not found: {action_id}") from exc
            raise ActionTransitionError(action_id, current.status.value, status.value) from exc

    async def list_pending(self, limit: int = 50) -> list[PersistedAction]:
        from boto3.dynamodb.conditions import Attr  # noqa: PLC0415

        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {"FilterExpression": Attr("status").eq(ActionStatus.PENDING.value)}
        while len(items) < limit:
            resp = await self._call("list pending actions", self._table.scan, **kwargs)
            items.extend(resp.get("Items", []))
            if "LastEvaluatedKey" not in resp:
                break
            kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]
        return [self._from_item(item) for item in items[:limit]]

    async def list_for_conversation(self, conversation_id: str) -> list[PersistedAction]:
        from boto3.dynamodb.conditions import Key  # noqa: PLC0415

        resp = await self._call(
            "list conversation actions",
            self._table.query,
            IndexName="conversationId-index",
            KeyConditionExpression=Key("conversationId").eq(conversation_id),
        )
        return [self._from_item(item) for item in resp.get("Items", [])]


def _is_conditional_check_failure(exc: Exception) -> bool:
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return False
    return response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"
