"""Tests for the conversation memory helpers."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from src.conversation import (
    add_ai_message,
    add_human_message,
    add_system_message,
    clear_conversation_history,
    format_chat_history,
    format_message,
    get_formatted_message_history,
    get_message_history,
    message_timestamp,
    summarize_conversation_history,
)
from src.state import create_state


def _state_with(n: int):
    state = create_state("conv_test")
    for i in range(n):
        state = add_human_message(state, f"question {i}") if i % 2 == 0 else add_ai_message(state, f"answer {i}")
    return state


class TestAddingMessages:
    def test_messages_carry_role_and_timestamp(self):
        state = add_system_message(add_ai_message(add_human_message(create_state(), "hi"), "hello"), "sys")
        assert [m.type for m in state["messages"]] == ["human", "ai", "system"]
        assert all(message_timestamp(m) for m in state["messages"])

    @pytest.mark.parametrize("content", ["", "   \n"])
    def test_empty_content_is_ignored(self, content):
        state = create_state()
        assert add_human_message(state, content) is state


class TestHistoryWindow:
    def test_returns_last_n_in_order(self):
        history = get_message_history(_state_with(6), limit=3)
        assert [m.content for m in history] == ["answer 3", "question 4", "answer 5"]

    def test_non_positive_limit_is_empty(self):
        assert get_message_history(_state_with(3), limit=0) == []


class TestFormatting:
    def test_format_message_labels_roles(self):
        assert format_message(HumanMessage(content="hi")) == "Human: hi"
        assert format_message(AIMessage(content="hello")) == "Assistant: hello"

    def test_format_message_rejects_non_messages(self):
        with pytest.raises(TypeError):
            format_message({"role": "human", "content": "hi"})

    def test_unreadable_message_is_skipped(self):
        transcript = format_chat_history(
            [HumanMessage(content="hi"), "not a message", AIMessage(content="hello")]
        )
        assert transcript == "Human: hi\n\nAssistant: hello"

    def test_formatted_history_uses_window(self):
        transcript = get_formatted_message_history(_state_with(4), limit=2)
        assert transcript == "Human: question 2\n\nAssistant: answer 3"


class TestClearAndSummarize:
    def test_clear_removes_messages_only(self):
        state = {**_state_with(2), "context": ["[1] x"]}
        cleared = clear_conversation_history(state)
        assert cleared["messages"] == []
        assert cleared["context"] == ["[1] x"]

    @pytest.mark.asyncio
    async def test_short_history_is_not_summarized(self):
        summarizer = AsyncMock(return_value="summary")
        state = _state_with(4)
        assert await summarize_conversation_history(state, summarizer, limit=10) is state
        summarizer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_long_history_becomes_summary_plus_recent(self):
        summarizer = AsyncMock(return_value="They talked about questions.")
        result = await summarize_conversation_history(_state_with(12), summarizer, limit=10)

        summarizer.assert_awaited_once()
        messages = result["messages"]
        assert len(messages) == 6
        assert messages[0].type == "system"
        assert "They talked about questions." in messages[0].content
        assert messages[-1].content == "answer 11"
