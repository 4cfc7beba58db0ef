"""CLI entry point for the conversational action agent.

This provides a simple terminal-based chat interface for testing and
development. For production, use the FastAPI server (src/server.py).

Usage:
    python -m src.main            # normal mode (quiet)
    python -m src.main --debug    # debug mode (shows stage logs)
    python -m src.main --variant rag
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from dotenv import load_dotenv

from src.agent import GRAPH_BUILDERS, build_pipeline, run_turn
from src.config import MAX_HISTORY_LENGTH, PIPELINE_VARIANT
from src.context import AppContext
from src.conversation import get_formatted_message_history, summarize_conversation_history
from src.state import message_text, new_conversation_id

logger = logging.getLogger(__name__)

ASSISTANT = "Assistant"


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


def _print_banner() -> None:
    print("\n" + "=" * 60)
    print("  RAG Action Agent - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation,")
    print("            'history', 'actions', 'summarize'.")
    print("=" * 60 + "\n")


async def _chat_loop(ctx: AppContext, variant: str, action_types: list[str] | None) -> None:
    pipeline = build_pipeline(ctx, variant, action_types)
    conversations = ctx.conversation_store
    conversation_id = new_conversation_id()
    logger.info("Started new conversation: %s", conversation_id)

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        command = user_input.lower()
        if command in ("exit", "quit", "q"):
            print("\nGoodbye! Have a great day!")
            break

        if command == "new":
            conversation_id = new_conversation_id()
            print(f"\n>> New conversation started: {conversation_id[:13]}...\n")
            continue

        if command == "history":
            state = await conversations.get_or_create(conversation_id)
            print("\n" + (get_formatted_message_history(state) or "(no messages yet)") + "\n")
            continue

        if command == "actions":
            actions = await ctx.action_store.list_for_conversation(conversation_id)
            if not actions:
                print("\n(no actions yet)\n")
            for action in actions:
                print(f"  {action.id}  {action.type:<18} {action.status.value:<12} {action.error or ''}")
            continue

        if command == "summarize":
            state = await conversations.get_or_create(conversation_id)
            state = await summarize_conversation_history(state, ctx.summarize, MAX_HISTORY_LENGTH)
            await conversations.put(state)
            print(f"\n>> History now holds {len(state['messages'])} message(s)\n")
            continue

        try:
            state = await run_turn(pipeline, conversations, user_input, conversation_id)
            print(f"\n{ASSISTANT}: {message_text(state['messages'][-1])}\n")
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\n{ASSISTANT}: I'm sorry, something went wrong: {e}")
            print("     Please try again or type 'new' to start a fresh conversation.\n")


async def _run(variant: str, action_types: list[str] | None) -> None:
    ctx = AppContext.from_config()
    await ctx.init()
    try:
        await _chat_loop(ctx, variant, action_types)
    finally:
        await ctx.shutdown()


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="RAG Action Agent CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument(
        "--variant", choices=sorted(GRAPH_BUILDERS), default=PIPELINE_VARIANT,
        help="Pipeline variant to run",
    )
    parser.add_argument(
        "--action-types", default="",
        help="Comma-separated action types for the linear/custom variants",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)
    _print_banner()
    action_types = [t.strip() for t in args.action_types.split(",") if t.strip()] or None
    asyncio.run(_run(args.variant, action_types))


if __name__ == "__main__":
    main()
