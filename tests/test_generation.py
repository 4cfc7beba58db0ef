"""Tests for the response generation stage."""

from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage

from src.conversation import add_ai_message, add_human_message
from src.nodes.generation import build_action_summary, make_generation_node
from src.prompts import GENERATION_FALLBACK_REPLY, NO_CONTEXT_PLACEHOLDER, NO_HISTORY_REPLY
from src.state import add_action, create_state, set_context


def _prompt_text(chat_model) -> str:
    """All text sent to the model on its last call."""
    prompt_value = chat_model.ainvoke.await_args.args[0]
    return "\n".join(m.content for m in prompt_value.to_messages())


def _action(action_id, action_type, status, data):
    return {"id": action_id, "type": action_type, "data": data, "status": status}


class TestGenerationNode:
    @pytest.mark.asyncio
    async def test_appends_model_reply(self, chat_model):
        state = add_human_message(set_context(create_state("c1"), ["[1] Opening hours are 9-5."]), "When are you open?")
        result = await make_generation_node(chat_model)(state)

        assert len(result["messages"]) == 2
        assert result["messages"][-1].type == "ai"
        assert result["messages"][-1].content == "Here is what I found."
        prompt = _prompt_text(chat_model)
        assert "[1] Opening hours are 9-5." in prompt
        assert "Human: When are you open?" in prompt

    @pytest.mark.asyncio
    async def test_empty_context_uses_placeholder(self, chat_model):
        state = add_human_message(create_state("c1"), "Anything?")
        await make_generation_node(chat_model)(state)
        assert NO_CONTEXT_PLACEHOLDER in _prompt_text(chat_model)

    @pytest.mark.asyncio
    async def test_empty_window_is_deterministic_and_skips_model(self, chat_model):
        node = make_generation_node(chat_model)
        first = await node(create_state("c1"))
        second = await node(create_state("c1"))

        assert first["messages"][-1].content == NO_HISTORY_REPLY
        assert second["messages"][-1].content == first["messages"][-1].content
        chat_model.ainvoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_model_error_appends_fallback(self, chat_model):
        chat_model.ainvoke.side_effect = TimeoutError("provider timed out")
        state = add_human_message(create_state("c1"), "Hi")

        result = await make_generation_node(chat_model)(state)

        assert len(result["messages"]) == len(state["messages"]) + 1
        assert result["messages"][-1].type == "ai"
        assert result["messages"][-1].content == GENERATION_FALLBACK_REPLY

    @pytest.mark.asyncio
    async def test_empty_model_output_appends_fallback(self, chat_model):
        chat_model.ainvoke.return_value = AIMessage(content="  ")
        result = await make_generation_node(chat_model)(add_human_message(create_state("c1"), "Hi"))
        assert result["messages"][-1].content == GENERATION_FALLBACK_REPLY

    @pytest.mark.asyncio
    async def test_action_summary_added_to_context(self, chat_model):
        state = add_human_message(create_state("c1"), "Book Alex and note milk")
        state = add_action(state, _action("a1", "book_appointment", "completed", {"person": "Alex"}))
        state = add_action(state, _action("a2", "take_note", "failed", {"content": "milk"}))

        await make_generation_node(chat_model, with_action_summary=True)(state)

        prompt = _prompt_text(chat_model)
        assert "Action summary:" in prompt
        assert '- book_appointment: {"person": "Alex"}' in prompt
        assert '- take_note: {"content": "milk"}' in prompt

    @pytest.mark.asyncio
    async def test_custom_system_prompt(self, chat_model):
        node = make_generation_node(chat_model, system_prompt="You are a pirate.")
        await node(add_human_message(create_state("c1"), "Hi"))
        assert _prompt_text(chat_model).startswith("You are a pirate.")

    @pytest.mark.asyncio
    async def test_history_window_is_bounded(self, chat_model):
        state = create_state("c1")
        for i in range(6):
            state = add_human_message(state, f"q{i}")
            state = add_ai_message(state, f"a{i}")
        state = add_human_message(state, "latest")

        await make_generation_node(chat_model, history_limit=3)(state)
        prompt = _prompt_text(chat_model)
        assert "q0" not in prompt
        assert "Assistant: a5" in prompt


class TestActionSummary:
    def test_groups_completed_and_failed(self):
        state = create_state("c1")
        state = add_action(state, _action("a1", "take_note", "completed", {"content": "x"}))
        state = add_action(state, _action("a2", "set_reminder", "failed", {"title": "y"}))
        state = add_action(state, _action("a3", "take_note", "pending", {"content": "z"}))

        summary = build_action_summary(state)
        assert summary == (
            'Completed actions:\n- take_note: {"content": "x"}\n\n'
            'Failed actions:\n- set_reminder: {"title": "y"}'
        )

    def test_empty_without_resolved_actions(self):
        assert build_action_summary(create_state("c1")) == ""
