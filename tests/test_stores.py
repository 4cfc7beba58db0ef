"""Tests for the durable action and conversation stores (in-memory and DynamoDB)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from langchain_core.messages import AIMessage, HumanMessage

from src.services.action_store import (
    ActionNotFoundError,
    ActionStoreError,
    ActionTransitionError,
    DynamoActionStore,
    InMemoryActionStore,
)
from src.services.cache import TTLCache
from src.services.conversation_store import (
    ConversationStoreError,
    DynamoConversationStore,
    InMemoryConversationStore,
)
from src.state import ActionStatus, add_message, create_state


def _conditional_failure() -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "failed"}}, "UpdateItem",
    )


# ── In-memory action store ───────────────────────────────────────────


class TestInMemoryActionStore:
    @pytest.mark.asyncio
    async def test_create_assigns_id_and_pending(self):
        store = InMemoryActionStore()
        action = await store.create("conv_1", "take_note", {"content": "x"})
        assert action.id.startswith("act_")
        assert action.status is ActionStatus.PENDING
        assert (await store.get(action.id)).data == {"content": "x"}

    @pytest.mark.asyncio
    async def test_get_returns_copies(self):
        store = InMemoryActionStore()
        action = await store.create("conv_1", "take_note", {"content": "x"})
        fetched = await store.get(action.id)
        fetched.data["content"] = "changed"
        assert (await store.get(action.id)).data == {"content": "x"}

    @pytest.mark.asyncio
    async def test_lifecycle_and_result(self):
        store = InMemoryActionStore()
        action = await store.create("conv_1", "take_note", {"content": "x"})
        await store.mark_in_progress(action.id)
        await store.mark_completed(action.id, {"noteId": "note_1"})

        stored = await store.get(action.id)
        assert stored.status is ActionStatus.COMPLETED
        assert stored.result == {"noteId": "note_1"}

    @pytest.mark.asyncio
    async def test_illegal_transition_raises(self):
        store = InMemoryActionStore()
        action = await store.create("conv_1", "take_note", {"content": "x"})
        with pytest.raises(ActionTransitionError) as exc_info:
            await store.mark_completed(action.id, None)
        assert exc_info.value.current == "pending"
        assert (await store.get(action.id)).status is ActionStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_action_raises_not_found(self):
        with pytest.raises(ActionNotFoundError):
            await InMemoryActionStore().mark_failed("act_missing", "x")

    @pytest.mark.asyncio
    async def test_list_pending_respects_limit_and_status(self):
        store = InMemoryActionStore()
        first = await store.create("conv_1", "take_note", {"content": "1"})
        await store.create("conv_1", "take_note", {"content": "2"})
        await store.create("conv_2", "take_note", {"content": "3"})
        await store.mark_failed(first.id, "nope")

        pending = await store.list_pending(limit=1)
        assert len(pending) == 1
        assert pending[0].data == {"content": "2"}

    @pytest.mark.asyncio
    async def test_list_for_conversation(self):
        store = InMemoryActionStore()
        await store.create("conv_1", "take_note", {"content": "1"})
        await store.create("conv_2", "take_note", {"content": "2"})
        assert [a.conversation_id for a in await store.list_for_conversation("conv_1")] == ["conv_1"]


# ── DynamoDB action store ────────────────────────────────────────────


class TestDynamoActionStore:
    def _store(self, table: MagicMock) -> DynamoActionStore:
        return DynamoActionStore("actions", "us-east-1", table=table)

    @pytest.mark.asyncio
    async def test_create_writes_json_payload(self):
        table = MagicMock()
        action = await self._store(table).create("conv_1", "take_note", {"content": "x"})

        item = table.put_item.call_args.kwargs["Item"]
        assert item["id"] == action.id
        assert item["conversationId"] == "conv_1"
        assert item["status"] == "pending"
        assert json.loads(item["data"]) == {"content": "x"}

    @pytest.mark.asyncio
    async def test_get_parses_item(self):
        table = MagicMock()
        table.get_item.return_value = {
            "Item": {
                "id": "act_1", "conversationId": "conv_1", "type": "take_note",
                "status": "completed", "data": '{"content": "x"}', "result": '{"noteId": "n"}',
                "error": None, "createdAt": "t0", "updatedAt": "t1",
            }
        }
        action = await self._store(table).get("act_1")
        assert action.status is ActionStatus.COMPLETED
        assert action.result == {"noteId": "n"}

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self):
        table = MagicMock()
        table.get_item.return_value = {}
        assert await self._store(table).get("act_1") is None

    @pytest.mark.asyncio
    async def test_update_status_is_conditional_on_prior_status(self):
        table = MagicMock()
        await self._store(table).update_status("act_1", ActionStatus.COMPLETED, result={"ok": True})

        kwargs = table.update_item.call_args.kwargs
        assert kwargs["Key"] == {"id": "act_1"}
        assert kwargs["ExpressionAttributeValues"][":status"] == "completed"
        assert kwargs["ExpressionAttributeValues"][":from0"] == "in_progress"
        assert json.loads(kwargs["ExpressionAttributeValues"][":result"]) == {"ok": True}

    @pytest.mark.asyncio
    async def test_rejected_condition_maps_to_transition_error(self):
        table = MagicMock()
        table.update_item.side_effect = _conditional_failure()
        table.get_item.return_value = {
            "Item": {
                "id": "act_1", "conversationId": "conv_1", "type": "take_note",
                "status": "completed", "data": "{}", "createdAt": "t0", "updatedAt": "t1",
            }
        }
        with pytest.raises(ActionTransitionError) as exc_info:
            await self._store(table).mark_in_progress("act_1")
        assert exc_info.value.current == "completed"

    @pytest.mark.asyncio
    async def test_rejected_condition_on_missing_item_is_not_found(self):
        table = MagicMock()
        table.update_item.side_effect = _conditional_failure()
        table.get_item.return_value = {}
        with pytest.raises(ActionNotFoundError):
            await self._store(table).mark_in_progress("act_1")

    @pytest.mark.asyncio
    async def test_backend_error_wrapped(self):
        table = MagicMock()
        table.put_item.side_effect = RuntimeError("network")
        with pytest.raises(ActionStoreError):
            await self._store(table).create("conv_1", "take_note", {"content": "x"})

    @pytest.mark.asyncio
    async def test_list_pending_follows_pagination(self):
        item = {
            "conversationId": "conv_1", "type": "take_note", "status": "pending",
            "data": "{}", "createdAt": "t0", "updatedAt": "t0",
        }
        table = MagicMock()
        table.scan.side_effect = [
            {"Items": [{**item, "id": "act_1"}], "LastEvaluatedKey": {"id": "act_1"}},
            {"Items": [{**item, "id": "act_2"}]},
        ]
        pending = await self._store(table).list_pending(limit=10)
        assert [a.id for a in pending] == ["act_1", "act_2"]
        assert table.scan.call_args_list[1].kwargs["ExclusiveStartKey"] == {"id": "act_1"}


# ── Conversation stores ──────────────────────────────────────────────


def _conversation():
    state = add_message(create_state("conv_1"), HumanMessage(content="hi"))
    return add_message(state, AIMessage(content="hello"))


class TestInMemoryConversationStore:
    @pytest.mark.asyncio
    async def test_put_get_round_trip(self):
        store = InMemoryConversationStore()
        await store.put(_conversation())
        loaded = await store.get("conv_1")
        assert [m.type for m in loaded["messages"]] == ["human", "ai"]

    @pytest.mark.asyncio
    async def test_delete(self):
        store = InMemoryConversationStore()
        await store.put(_conversation())
        await store.delete("conv_1")
        assert await store.get("conv_1") is None

    @pytest.mark.asyncio
    async def test_expired_conversation_is_gone(self):
        now = [1000.0]
        store = InMemoryConversationStore(cache=TTLCache(ttl_seconds=60, clock=lambda: now[0]))
        await store.put(_conversation())
        now[0] += 61
        assert await store.get("conv_1") is None

    @pytest.mark.asyncio
    async def test_oversized_put_raises_and_drops_stale_state(self):
        store = InMemoryConversationStore(cache=TTLCache(max_bytes=500))
        await store.put(create_state("conv_1"))
        big = add_message(create_state("conv_1"), HumanMessage(content="x" * 1000))

        with pytest.raises(ConversationStoreError):
            await store.put(big)
        assert await store.get("conv_1") is None

    @pytest.mark.asyncio
    async def test_get_or_create(self):
        store = InMemoryConversationStore()
        fresh = await store.get_or_create()
        assert fresh["conversation_id"].startswith("conv_")

        named = await store.get_or_create("conv_client")
        assert named["conversation_id"] == "conv_client"
        assert named["messages"] == []

        await store.put(_conversation())
        assert len((await store.get_or_create("conv_1"))["messages"]) == 2


class TestDynamoConversationStore:
    @pytest.mark.asyncio
    async def test_put_writes_ttl_and_serialized_state(self):
        table = MagicMock()
        store = DynamoConversationStore("conversations", "us-east-1", ttl_days=1, table=table)
        await store.put(_conversation())

        item = table.put_item.call_args.kwargs["Item"]
        assert item["id"] == "conv_1"
        assert isinstance(item["ttl"], int)
        assert json.loads(item["state"])["conversation_id"] == "conv_1"

    @pytest.mark.asyncio
    async def test_get_restores_state(self):
        table = MagicMock()
        store = DynamoConversationStore("conversations", "us-east-1", table=table)
        await store.put(_conversation())
        table.get_item.return_value = {"Item": table.put_item.call_args.kwargs["Item"]}

        loaded = await store.get("conv_1")
        assert [m.content for m in loaded["messages"]] == ["hi", "hello"]

    @pytest.mark.asyncio
    async def test_corrupt_record_treated_as_missing(self):
        table = MagicMock()
        table.get_item.return_value = {"Item": {"id": "conv_1", "state": "{not json"}}
        store = DynamoConversationStore("conversations", "us-east-1", table=table)
        assert await store.get("conv_1") is None

    @pytest.mark.asyncio
    async def test_backend_error_wrapped(self):
        table = MagicMock()
        table.delete_item.side_effect = RuntimeError("network")
        store = DynamoConversationStore("conversations", "us-east-1", table=table)
        with pytest.raises(ConversationStoreError):
            await store.delete("conv_1")
