"""Shared test fixtures for the RAG action agent test suite."""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ["EMBEDDINGS_PROVIDER"] = "fake"
    os.environ["STORAGE_BACKEND"] = "memory"
    os.environ["METRICS_ENABLED"] = "false"
    os.environ["WORKER_ENABLED"] = "false"


@pytest.fixture
def chat_model():
    """Chat model double whose ``ainvoke`` returns a fixed reply."""
    model = MagicMock()
    model.ainvoke = AsyncMock(return_value=AIMessage(content="Here is what I found."))
    return model


@pytest.fixture
def tool_selector():
    """Tool selector double that selects nothing by default."""
    selector = MagicMock()
    selector.select = AsyncMock(return_value=None)
    return selector


@pytest.fixture
def semantic_store():
    """Semantic store double returning no chunks by default."""
    store = MagicMock()
    store.similarity_search = AsyncMock(return_value=[])
    return store


@pytest.fixture
def action_store():
    from src.services.action_store import InMemoryActionStore

    return InMemoryActionStore()


@pytest.fixture
def conversation_store():
    from src.services.conversation_store import InMemoryConversationStore

    return InMemoryConversationStore()


@pytest.fixture
def app_context(chat_model, tool_selector, semantic_store, action_store, conversation_store):
    """An ``AppContext`` wired entirely to test doubles and in-memory stores."""
    from src.context import AppContext

    return AppContext(
        chat_model=chat_model,
        tool_selector=tool_selector,
        semantic_store=semantic_store,
        action_store=action_store,
        conversation_store=conversation_store,
        action_timeout=1.0,
        knowledge_base_path=None,
    )
