"""Durable conversation store.

States are stored serialized (see ``src.state.state_to_dict``) so every
``get`` hands back a fresh, request-scoped copy.  Writes are last-write-wins:
two concurrent turns on the same conversation can overwrite each other's
appended messages.  Callers that need stricter guarantees must serialize
requests per conversation themselves.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from src.services.cache import TTLCache
from src.state import ConversationState, create_state, state_from_dict, state_to_dict

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86_400


class ConversationStoreError(Exception):
    """Raised when a conversation cannot be loaded, saved or deleted."""


class ConversationStore(ABC):
    @abstractmethod
    async def get(self, conversation_id: str) -> ConversationState | None: ...

    @abstractmethod
    async def put(self, state: ConversationState) -> None: ...

    @abstractmethod
    async def delete(self, conversation_id: str) -> None: ...

    async def get_or_create(self, conversation_id: str | None = None) -> ConversationState:
        """Load *conversation_id*, or start a new conversation.

        A missing id yields a fresh generated id; an unknown id starts a new
        conversation under that id.
        """
        if conversation_id:
            existing = await self.get(conversation_id)
            if existing is not None:
                return existing
        state = create_state(conversation_id)
        logger.debug("Creating new conversation state %s", state["conversation_id"])
        return state

    async def close(self) -> None:  # noqa: B027 — optional hook
        """Release backend resources (no-op by default)."""


# ── In-memory ────────────────────────────────────────────────────────


class InMemoryConversationStore(ConversationStore):
    """Process-local store on a byte-bounded TTL/LRU cache."""

    def __init__(self, ttl_days: float = 1, *, cache: TTLCache | None = None) -> None:
        self._cache = cache or TTLCache(ttl_seconds=ttl_days * _SECONDS_PER_DAY)

    async def get(self, conversation_id: str) -> ConversationState | None:
        raw = self._cache.get(conversation_id)
        if raw is None:
            return None
        return state_from_dict(json.loads(raw))

    async def put(self, state: ConversationState) -> None:
        self._cache.put(state["conversation_id"], json.dumps(state_to_dict(state)))
        if not self._cache.has(state["conversation_id"]):
            raise ConversationStoreError(
                f"Conversation {state['conversation_id']} is too large for the in-memory store"
            )
        logger.debug(
            "Saved conversation %s (%d messages)",
            state["conversation_id"], len(state["messages"]),
        )

    async def delete(self, conversation_id: str) -> None:
        self._cache.invalidate(conversation_id)


# ── DynamoDB ─────────────────────────────────────────────────────────


class DynamoConversationStore(ConversationStore):
    """DynamoDB table keyed on ``id`` with a ``ttl`` attribute for expiry."""

    def __init__(self, table_name: str, region: str, ttl_days: float = 1, *, table=None) -> None:
        if table is None:
            import boto3  # noqa: PLC0415

            table = boto3.resource("dynamodb", region_name=region).Table(table_name)
        self._table = table
        self._table_name = table_name
        self._ttl_days = ttl_days

    async def get(self, conversation_id: str) -> ConversationState | None:
        try:
            resp = await asyncio.to_thread(self._table.get_item, Key={"id": conversation_id})
        except Exception as exc:
            logger.error("Failed to load conversation %s: %s", conversation_id, exc)
            raise ConversationStoreError(f"Failed to load conversation state: {exc}") from exc

        item = resp.get("Item")
        if not item:
            return None
        try:
            return state_from_dict(json.loads(item["state"]))
        except (KeyError, TypeError, ValueError) as exc:
            # An unreadable record is treated as missing so the user can keep chatting
            logger.error("Failed to parse conversation %s: %s", conversation_id, exc)
            return None

    async def put(self, state: ConversationState) -> None:
        item = {
            "id": state["conversation_id"],
            "state": json.dumps(state_to_dict(state)),
            "lastUpdated": datetime.now(UTC).isoformat(),
            "ttl": int(time.time() + self._ttl_days * _SECONDS_PER_DAY),
        }
        try:
            await asyncio.to_thread(self._table.put_item, Item=item)
        except Exception as exc:
            logger.error("Failed to save conversation %s: %s", state["conversation_id"], exc)
            raise ConversationStoreError(f"Failed to save conversation state: {exc}") from exc

    async def delete(self, conversation_id: str) -> None:
        try:
            await asyncio.to_thread(self._table.delete_item, Key={"id": conversation_id})
        except Exception as exc:
            logger.error("Failed to delete conversation %s: %s", conversation_id, exc)
            raise ConversationStoreError(f"Failed to delete conversation state: {exc}") from exc
