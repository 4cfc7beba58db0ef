"""Process-wide dependencies, built once at start-up and passed explicitly.

``AppContext`` replaces module-level client singletons: the server lifespan
and the CLI each build one context, ``await ctx.init()`` it, hand it to
``build_pipeline`` and ``await ctx.shutdown()`` on exit.  Tests build their
own context from fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from langchain_core.messages import HumanMessage

from src.config import (
    ACTION_TIMEOUT_SECONDS,
    ACTIONS_TABLE,
    AWS_REGION,
    CONVERSATION_TTL_DAYS,
    CONVERSATIONS_TABLE,
    KNOWLEDGE_BASE_PATH,
    STORAGE_BACKEND,
)
from src.prompts import SUMMARY_PROMPT
from src.services.action_store import ActionStore, DynamoActionStore, InMemoryActionStore
from src.services.conversation_store import (
    ConversationStore,
    DynamoConversationStore,
    InMemoryConversationStore,
)
from src.services.llm import ToolSelector, build_chat_model, build_extraction_model
from src.services.metrics import metrics
from src.services.vector_store import SemanticStore, build_semantic_store
from src.state import message_text
from src.tools.handlers import ActionHandler, build_default_handlers
from src.tools.registry import ActionRegistry, default_registry

logger = logging.getLogger(__name__)


def build_stores(backend: str = STORAGE_BACKEND) -> tuple[ActionStore, ConversationStore]:
    """Create the action and conversation stores for *backend*."""
    if backend == "memory":
        return InMemoryActionStore(), InMemoryConversationStore(ttl_days=CONVERSATION_TTL_DAYS)
    if backend == "dynamodb":
        return (
            DynamoActionStore(ACTIONS_TABLE, AWS_REGION),
            DynamoConversationStore(CONVERSATIONS_TABLE, AWS_REGION, ttl_days=CONVERSATION_TTL_DAYS),
        )
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


@dataclass
class AppContext:
    chat_model: object
    tool_selector: ToolSelector
    semantic_store: SemanticStore
    action_store: ActionStore
    conversation_store: ConversationStore
    registry: ActionRegistry = field(default_factory=default_registry)
    handlers: dict[str, ActionHandler] = field(default_factory=dict)
    action_timeout: float = ACTION_TIMEOUT_SECONDS
    knowledge_base_path: str | None = KNOWLEDGE_BASE_PATH

    def __post_init__(self) -> None:
        if not self.handlers:
            self.handlers = build_default_handlers(self.semantic_store)

    @classmethod
    def from_config(cls) -> AppContext:
        """Build the production context from ``src.config``."""
        action_store, conversation_store = build_stores()
        return cls(
            chat_model=build_chat_model(),
            tool_selector=ToolSelector(build_extraction_model()),
            semantic_store=build_semantic_store(),
            action_store=action_store,
            conversation_store=conversation_store,
        )

    async def init(self) -> None:
        """Seed the semantic store from the knowledge base, if configured."""
        if not self.knowledge_base_path:
            return
        count = await self.semantic_store.ingest_markdown(self.knowledge_base_path)
        logger.info("Indexed %d knowledge base sections from %s", count, self.knowledge_base_path)

    async def shutdown(self) -> None:
        """Close the stores and push out buffered metrics."""
        for store in (self.action_store, self.conversation_store):
            try:
                await store.close()
            except Exception:
                logger.exception("Error closing %s", type(store).__name__)
        metrics.flush()

    async def summarize(self, transcript: str) -> str:
        """Summarize *transcript* with the chat model (for history compaction)."""
        response = await self.chat_model.ainvoke(
            [HumanMessage(content=SUMMARY_PROMPT.format(history=transcript))]
        )
        return message_text(response).strip()
