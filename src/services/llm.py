"""Language-model clients and the tool-selection adapter.

The pipeline never looks at provider-specific response shapes.  Tool
selection goes through :class:`ToolSelector`, which binds the offered tools
to a LangChain chat model and normalises whatever comes back into a single
:class:`SelectedTool` (or ``None``).
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from src.config import (
    ANTHROPIC_API_KEY,
    EXTRACTION_MODEL_NAME,
    LLM_MAX_RETRIES,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    MODEL_NAME,
)
from src.prompts import get_extraction_prompt
from src.services.metrics import metrics

logger = logging.getLogger(__name__)


# ── Builders ─────────────────────────────────────────────────────────


def build_chat_model() -> ChatAnthropic:
    """Build the conversational model used for response generation."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=LLM_TEMPERATURE,
        max_tokens=1024,
        timeout=LLM_TIMEOUT_SECONDS,
        max_retries=LLM_MAX_RETRIES,
    )


def build_extraction_model() -> ChatAnthropic:
    """Build the function-calling model used for action extraction."""
    return ChatAnthropic(
        model=EXTRACTION_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.1,  # Arguments must be copied from the message, not invented
        max_tokens=512,
        timeout=LLM_TIMEOUT_SECONDS,
        max_retries=LLM_MAX_RETRIES,
    )


# ── Tool selection ──────────────────────────────────────────────────


@dataclass(frozen=True)
class SelectedTool:
    """The one tool the model chose, with its arguments as a JSON string."""

    name: str
    arguments_json: str


def normalize_tool_selection(response: AIMessage) -> SelectedTool | None:
    """Reduce a model response to at most one :class:`SelectedTool`.

    Parsed ``tool_calls`` win; if the provider could not parse the
    arguments they land in ``invalid_tool_calls`` and are passed through
    as the raw string so the caller's JSON parsing rejects them.
    """
    tool_calls = getattr(response, "tool_calls", None) or []
    if tool_calls:
        if len(tool_calls) > 1:
            logger.debug("Model selected %d tools; keeping the first", len(tool_calls))
        call = tool_calls[0]
        return SelectedTool(name=call["name"], arguments_json=json.dumps(call.get("args") or {}))

    invalid = getattr(response, "invalid_tool_calls", None) or []
    if invalid:
        call = invalid[0]
        return SelectedTool(name=call.get("name") or "", arguments_json=call.get("args") or "")

    return None


class ToolSelector:
    """Ask a function-calling model to pick at most one tool for a message."""

    def __init__(self, model: BaseChatModel) -> None:
        self._model = model

    async def select(self, message_text: str, tools: list[dict[str, Any]]) -> SelectedTool | None:
        if not tools:
            return None

        bound = self._model.bind_tools(tools)
        prompt = [SystemMessage(content=get_extraction_prompt()), HumanMessage(content=message_text)]
        t0 = time.perf_counter()
        try:
            response = await bound.ainvoke(prompt)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "select_tool",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "select_tool", latency_ms=elapsed)
        return normalize_tool_selection(response)
