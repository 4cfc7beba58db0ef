"""RAG Action Agent — a conversational assistant that answers from a knowledge base and performs actions.

Architecture Overview
=====================

Each user turn runs through a **LangGraph** pipeline over one shared
``ConversationState`` (messages, retrieved context, actions):

1. **retrieve** — semantic search for the latest user message; the hits
   replace the turn's ``context``.
2. **extract_actions** — a function-calling model may pick one of the
   registered actions (book_appointment, take_note, set_reminder,
   search_knowledge).  Arguments are validated against the Action Registry,
   persisted as ``pending`` and added to the state.
3. **execute_actions** — only when actions exist: every pending action is
   run by its handler, concurrently, each with its own timeout.
4. **generate** / **generate_with_actions** — the chat model answers from
   the history window and context, reporting executed actions if any.

Routing: retrieve → extract_actions → (actions?) → execute_actions → generate_with_actions
                                    → (none?)    → generate

Key Design Decisions
--------------------
- **Failure isolation**: each stage absorbs its own expected failures.
  Anything else is caught by the orchestrator, which appends one apologetic
  reply to the last good state.  If the graph cannot be built at all a
  degraded retrieve+generate pipeline is used.
- **Immutable state**: stages return new state dicts; nothing is mutated
  in place.
- **One action id**: the id generated by the durable action store is used
  in the conversation state too.
- **Explicit dependencies**: models, stores and handlers live in an
  ``AppContext`` built at start-up (``src/context.py``).
- **Dual Interface**: FastAPI server (production) + CLI chat loop
  (development/testing).

Package Structure
-----------------
- ``src/agent.py`` — LangGraph graph variants, fallback and degraded pipeline
- ``src/state.py`` — conversation state, action status lifecycle
- ``src/conversation.py`` — message history helpers
- ``src/context.py`` — dependency context with ``init()`` / ``shutdown()``
- ``src/nodes/`` — retrieval, extraction, execution and generation stages
- ``src/tools/`` — Action Registry, handlers, single-action executor
- ``src/services/`` — models, semantic store, durable stores, cache, metrics
- ``src/worker.py`` — background processor for pending actions
- ``src/server.py`` / ``src/api/`` — FastAPI application, routes and schemas
- ``src/main.py`` — CLI chat interface
"""
