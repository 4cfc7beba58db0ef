"""Pluggable action handlers.

A handler receives the validated action payload and returns an
:class:`ActionResult`.  The built-in handlers below stand in for real
booking, note and reminder services; swap them by passing a different
mapping to the pipeline (see ``src/context.py``).  Raising is allowed: the
executor turns any exception into a ``failed`` action.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from src.services.vector_store import SemanticStore
from src.tools.registry import ActionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None


ActionHandler = Callable[[dict[str, Any]], Awaitable[ActionResult]]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _missing(payload: dict[str, Any], *names: str) -> list[str]:
    return [n for n in names if not payload.get(n)]


# ── Booking ──────────────────────────────────────────────────────────


async def handle_booking(payload: dict[str, Any]) -> ActionResult:
    missing = _missing(payload, "person", "date", "time")
    if missing:
        return ActionResult(False, error=f"Missing required fields for booking: {', '.join(missing)}")

    logger.info(
        "Booking appointment with %s on %s at %s",
        payload["person"], payload["date"], payload["time"],
    )
    return ActionResult(
        True,
        result={
            "appointmentId": _new_id("appt"),
            "confirmed": True,
            "details": {
                "person": payload["person"],
                "date": payload["date"],
                "time": payload["time"],
                "duration": payload.get("duration", 30),
                "location": payload.get("location", "Virtual"),
                "purpose": payload.get("purpose") or "Not specified",
            },
        },
    )


# ── Notes ────────────────────────────────────────────────────────────


async def handle_note(payload: dict[str, Any]) -> ActionResult:
    content = payload.get("content")
    if not content:
        return ActionResult(False, error="Missing required content for note")

    snippet = content[:50] + ("..." if len(content) > 50 else "")
    logger.info("Saving note %r", payload.get("title", "Untitled Note"))
    return ActionResult(
        True,
        result={
            "noteId": _new_id("note"),
            "saved": True,
            "title": payload.get("title") or "Untitled Note",
            "category": payload.get("category", "other"),
            "tags": list(payload.get("tags") or []),
            "snippet": snippet,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )


# ── Reminders ────────────────────────────────────────────────────────


async def handle_reminder(payload: dict[str, Any]) -> ActionResult:
    missing = _missing(payload, "title", "date", "time")
    if missing:
        return ActionResult(False, error=f"Missing required fields for reminder: {', '.join(missing)}")

    logger.info("Scheduling reminder %r for %s %s", payload["title"], payload["date"], payload["time"])
    return ActionResult(
        True,
        result={
            "reminderId": _new_id("reminder"),
            "scheduled": True,
            "notificationTime": f"{payload['date']} {payload['time']}",
            "priority": payload.get("priority", "medium"),
            "recurrence": payload.get("recurrence", "none"),
            "description": payload.get("description") or "No description provided",
        },
    )


# ── Knowledge search ─────────────────────────────────────────────────


def make_search_knowledge_handler(store: SemanticStore) -> ActionHandler:
    """Build a handler that runs the search against the semantic store.

    Unlike the retrieval stage, a store failure here is reported as a
    failed action so the user learns the search did not happen.
    """

    async def handle_search_knowledge(payload: dict[str, Any]) -> ActionResult:
        query = payload.get("query")
        if not query:
            return ActionResult(False, error="Missing required query for knowledge search")

        max_results = payload.get("maxResults", 5)
        filters = payload.get("filters") or None
        chunks = await store.similarity_search(query, k=max_results, filter=filters)
        return ActionResult(
            True,
            result={
                "query": query,
                "resultsCount": len(chunks),
                "results": [
                    {
                        "title": chunk.metadata.get("title", f"Result {i}"),
                        "snippet": chunk.content[:200],
                        "score": chunk.score,
                    }
                    for i, chunk in enumerate(chunks, 1)
                ],
                "filters": filters or {},
            },
        )

    return handle_search_knowledge


def build_default_handlers(store: SemanticStore) -> dict[str, ActionHandler]:
    """Dispatch table for the built-in action types."""
    return {
        ActionType.BOOK_APPOINTMENT.value: handle_booking,
        ActionType.TAKE_NOTE.value: handle_note,
        ActionType.SET_REMINDER.value: handle_reminder,
        ActionType.SEARCH_KNOWLEDGE.value: make_search_knowledge_handler(store),
    }
