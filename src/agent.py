"""LangGraph pipeline orchestrator for the conversational action agent.

Architecture:
  Every pipeline is a LangGraph StateGraph over ``ConversationState``.  The
  production (``conditional``) graph has five nodes:

    1. **retrieve**               — semantic search for the latest user message
    2. **extract_actions**        — function-calling model picks at most one action
    3. **execute_actions**        — runs every ``pending`` action concurrently
    4. **generate_with_actions**  — reply that also reports executed actions
    5. **generate**               — plain RAG reply

  Routing:
    retrieve → extract_actions → (pending_actions?) → execute_actions → generate_with_actions → END
                               → (none?)            → generate → END

  Other variants (``minimal``, ``rag``, ``linear``, ``custom``) reuse the same
  nodes in fixed orders.

  Failure isolation:
    Each node absorbs its own expected failures.  Anything that still escapes
    is caught here: the caller receives the last state the graph produced
    before the error with one apologetic assistant message appended.  If the
    graph cannot even be built, a two-stage degraded pipeline (retrieve then
    generate, each guarded) is used instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from langgraph.graph import END, StateGraph

from src.config import PIPELINE_VARIANT
from src.conversation import add_ai_message, add_human_message
from src.nodes.execution import make_execution_node
from src.nodes.extraction import make_extraction_node
from src.nodes.generation import make_generation_node
from src.nodes.retrieval import make_retrieval_node
from src.prompts import PIPELINE_FALLBACK_REPLY
from src.services.conversation_store import ConversationStore
from src.state import ConversationState

if TYPE_CHECKING:
    from src.context import AppContext

logger = logging.getLogger(__name__)

# ── Node names ───────────────────────────────────────────────────────

RETRIEVE = "retrieve"
EXTRACT_ACTIONS = "extract_actions"
EXECUTE_ACTIONS = "execute_actions"
GENERATE = "generate"
GENERATE_WITH_ACTIONS = "generate_with_actions"


class Pipeline(Protocol):
    name: str

    async def run(self, state: ConversationState) -> ConversationState: ...


# ── Fallback responder ───────────────────────────────────────────────


def respond_with_fallback(state: ConversationState) -> ConversationState:
    """Append the fixed apology to *state*."""
    return add_ai_message(state, PIPELINE_FALLBACK_REPLY)


# ── Conditional edge ─────────────────────────────────────────────────


def route_after_extraction(state: ConversationState) -> str:
    """Take the actions branch iff there are any actions in the state."""
    if state["pending_actions"]:
        return EXECUTE_ACTIONS
    return GENERATE


# ── Graph variants ───────────────────────────────────────────────────


def build_minimal_graph(ctx: AppContext):
    """Generation only; no retrieval, no actions."""
    graph = StateGraph(ConversationState)
    graph.add_node(GENERATE, make_generation_node(ctx.chat_model))
    graph.set_entry_point(GENERATE)
    graph.add_edge(GENERATE, END)
    return graph.compile()


def build_rag_graph(ctx: AppContext):
    """retrieve → generate."""
    graph = StateGraph(ConversationState)
    graph.add_node(RETRIEVE, make_retrieval_node(ctx.semantic_store))
    graph.add_node(GENERATE, make_generation_node(ctx.chat_model))
    graph.set_entry_point(RETRIEVE)
    graph.add_edge(RETRIEVE, GENERATE)
    graph.add_edge(GENERATE, END)
    return graph.compile()


def build_linear_graph(ctx: AppContext, action_types: list[str] | None = None):
    """retrieve → extract_actions → execute_actions → generate_with_actions.

    With *action_types*, extraction offers and execution runs only those types.
    """
    graph = StateGraph(ConversationState)
    graph.add_node(RETRIEVE, make_retrieval_node(ctx.semantic_store))
    graph.add_node(
        EXTRACT_ACTIONS,
        make_extraction_node(
            ctx.tool_selector, ctx.registry, ctx.action_store, action_types=action_types,
        ),
    )
    graph.add_node(
        EXECUTE_ACTIONS,
        make_execution_node(
            ctx.handlers, ctx.action_store,
            timeout=ctx.action_timeout, action_types=action_types,
        ),
    )
    graph.add_node(
        GENERATE_WITH_ACTIONS, make_generation_node(ctx.chat_model, with_action_summary=True),
    )
    graph.set_entry_point(RETRIEVE)
    graph.add_edge(RETRIEVE, EXTRACT_ACTIONS)
    graph.add_edge(EXTRACT_ACTIONS, EXECUTE_ACTIONS)
    graph.add_edge(EXECUTE_ACTIONS, GENERATE_WITH_ACTIONS)
    graph.add_edge(GENERATE_WITH_ACTIONS, END)
    return graph.compile()


def build_conditional_graph(ctx: AppContext):
    """Production graph: execute and summarize actions only when some were extracted."""
    graph = StateGraph(ConversationState)
    graph.add_node(RETRIEVE, make_retrieval_node(ctx.semantic_store))
    graph.add_node(
        EXTRACT_ACTIONS, make_extraction_node(ctx.tool_selector, ctx.registry, ctx.action_store),
    )
    graph.add_node(
        EXECUTE_ACTIONS,
        make_execution_node(ctx.handlers, ctx.action_store, timeout=ctx.action_timeout),
    )
    graph.add_node(
        GENERATE_WITH_ACTIONS, make_generation_node(ctx.chat_model, with_action_summary=True),
    )
    graph.add_node(GENERATE, make_generation_node(ctx.chat_model))

    graph.set_entry_point(RETRIEVE)
    graph.add_edge(RETRIEVE, EXTRACT_ACTIONS)
    graph.add_conditional_edges(
        EXTRACT_ACTIONS,
        route_after_extraction,
        {EXECUTE_ACTIONS: EXECUTE_ACTIONS, GENERATE: GENERATE},
    )
    graph.add_edge(EXECUTE_ACTIONS, GENERATE_WITH_ACTIONS)
    graph.add_edge(GENERATE_WITH_ACTIONS, END)
    graph.add_edge(GENERATE, END)
    return graph.compile()


def build_custom_graph(ctx: AppContext, action_types: list[str] | None = None):
    """Linear graph restricted to *action_types* (all must be registered)."""
    if not action_types:
        raise ValueError("The custom pipeline needs at least one action type")
    unknown = [t for t in action_types if t not in ctx.registry]
    if unknown:
        raise ValueError(f"Unknown action types: {', '.join(unknown)}")
    return build_linear_graph(ctx, action_types=list(action_types))


GRAPH_BUILDERS: dict[str, Callable[..., object]] = {
    "minimal": build_minimal_graph,
    "rag": build_rag_graph,
    "linear": build_linear_graph,
    "conditional": build_conditional_graph,
    "custom": build_custom_graph,
}


# ── Pipelines ────────────────────────────────────────────────────────


class ConversationPipeline:
    """A compiled graph wrapped in the top-level failure boundary."""

    def __init__(self, graph, name: str) -> None:
        self._graph = graph
        self.name = name

    async def run(self, state: ConversationState) -> ConversationState:
        """Run one turn.  Never raises for errors inside the graph.

        The graph is streamed in ``values`` mode so that the state emitted
        after the last successful node is at hand if a later node raises.
        """
        last = state
        try:
            async for snapshot in self._graph.astream(state, stream_mode="values"):
                last = snapshot
        except Exception:
            logger.exception(
                "[%s] Pipeline %r failed; replying with fallback", state["conversation_id"], self.name,
            )
            return respond_with_fallback(last)
        return last


class DegradedPipeline:
    """Retrieve then generate, without LangGraph, each step guarded."""

    name = "degraded"

    def __init__(self, retrieve, generate) -> None:
        self._retrieve = retrieve
        self._generate = generate

    async def run(self, state: ConversationState) -> ConversationState:
        conversation_id = state["conversation_id"]
        try:
            state = await self._retrieve(state)
        except Exception:
            logger.exception("[%s] Degraded retrieval failed", conversation_id)

        try:
            return await self._generate(state)
        except Exception:
            logger.exception("[%s] Degraded generation failed", conversation_id)
            return respond_with_fallback(state)


def build_degraded_pipeline(ctx: AppContext) -> DegradedPipeline:
    return DegradedPipeline(
        make_retrieval_node(ctx.semantic_store),
        make_generation_node(ctx.chat_model),
    )


def build_pipeline(
    ctx: AppContext,
    variant: str = PIPELINE_VARIANT,
    action_types: list[str] | None = None,
) -> Pipeline:
    """Build the pipeline for *variant*, degrading if the graph cannot be built.

    Errors while building the degraded pipeline itself propagate.
    """
    try:
        builder = GRAPH_BUILDERS[variant]
        if variant in ("linear", "custom"):
            graph = builder(ctx, action_types)
        else:
            graph = builder(ctx)
    except Exception:
        logger.exception("Could not build %r pipeline; using degraded pipeline", variant)
        return build_degraded_pipeline(ctx)

    logger.info("Pipeline %r compiled", variant)
    return ConversationPipeline(graph, variant)


# ── Turn handling ────────────────────────────────────────────────────


async def run_turn(
    pipeline: Pipeline,
    conversations: ConversationStore,
    message: str,
    conversation_id: str | None = None,
) -> ConversationState:
    """Load (or start) a conversation, add *message*, run the pipeline, save.

    Store errors propagate; pipeline errors never do.  A blank *message*
    raises ``ValueError`` before anything is loaded or run, since the
    pipeline would otherwise act on the previous human message again.
    """
    if not message or not message.strip():
        raise ValueError("Message must not be blank")
    state = await conversations.get_or_create(conversation_id)
    state = add_human_message(state, message)
    state = await pipeline.run(state)
    await conversations.put(state)
    return state
