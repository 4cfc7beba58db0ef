"""Retrieval stage: fill ``context`` with chunks relevant to the latest user message."""

from __future__ import annotations

import logging
from typing import Any

from src.config import RETRIEVAL_LIMIT
from src.services.vector_store import ContextChunk, SemanticStore
from src.state import ConversationState, get_last_human_message, message_text, set_context

logger = logging.getLogger(__name__)


def format_context(chunks: list[ContextChunk]) -> list[str]:
    """Label chunks ``[1] ...``, ``[2] ...`` in retrieval order."""
    return [f"[{i}] {chunk.content}" for i, chunk in enumerate(chunks, 1)]


def make_retrieval_node(
    store: SemanticStore,
    *,
    k: int = RETRIEVAL_LIMIT,
    metadata_filter: dict[str, Any] | None = None,
):
    """Create the retrieval node.

    The node queries *store* with the content of the last human message and
    **replaces** ``context`` with the formatted results.  No human message
    means nothing to search for, so the state is returned untouched.  Zero
    results and store failures both leave ``context`` empty; neither is
    raised to the caller.

    Pass *metadata_filter* to restrict the search (e.g. to one category).
    """

    async def retrieval_node(state: ConversationState) -> ConversationState:
        conversation_id = state["conversation_id"]
        last_human = get_last_human_message(state)
        if last_human is None or not last_human.content:
            logger.debug("[%s] No human message found, skipping retrieval", conversation_id)
            return state

        query = message_text(last_human)
        try:
            chunks = await store.similarity_search(query, k=k, filter=metadata_filter)
        except Exception as exc:
            logger.error("[%s] Error retrieving context: %s", conversation_id, exc)
            return set_context(state, [])

        if not chunks:
            logger.debug("[%s] No relevant context found", conversation_id)
            return set_context(state, [])

        logger.debug("[%s] Retrieved %d context chunks", conversation_id, len(chunks))
        return set_context(state, format_context(chunks))

    return retrieval_node
