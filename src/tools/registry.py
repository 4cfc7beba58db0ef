"""Action registry: parameter schemas and validation for extractable actions.

Each action type is described by an :class:`ActionSchema` listing its
fields, their primitive kind, optional enum constraint and default.  The
same schema is used twice:

* rendered as a tool definition offered to the function-calling model, and
* to validate whatever arguments the model sends back before anything is
  persisted.

Validation is pure, accumulates every violation and never mutates its input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

FieldKind = str  # "string" | "integer" | "array" | "object"

_KIND_CHECKS = {
    "string": lambda v: isinstance(v, str),
    # bool is a subclass of int in Python, but not an integer in JSON
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


class ActionType(str, Enum):
    BOOK_APPOINTMENT = "book_appointment"
    TAKE_NOTE = "take_note"
    SET_REMINDER = "set_reminder"
    SEARCH_KNOWLEDGE = "search_knowledge"


@dataclass(frozen=True)
class FieldSpec:
    kind: FieldKind
    description: str = ""
    enum: tuple[Any, ...] | None = None
    default: Any = None
    # Extra JSON-schema keywords passed through to the tool definition
    # (e.g. ``items`` for arrays, ``properties`` for objects)
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in _KIND_CHECKS:
            raise ValueError(f"Unsupported field kind: {self.kind}")

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.kind}
        if self.description:
            schema["description"] = self.description
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if self.default is not None:
            schema["default"] = self.default
        schema.update(self.extra)
        return schema


@dataclass(frozen=True)
class ActionSchema:
    description: str
    fields: dict[str, FieldSpec]
    required: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        missing = [name for name in self.required if name not in self.fields]
        if missing:
            raise ValueError(f"Required fields not declared: {', '.join(missing)}")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


class ActionRegistry:
    """Maps action-type identifiers to their parameter schemas."""

    def __init__(self) -> None:
        self._schemas: dict[str, ActionSchema] = {}

    def define(self, action_type: str, schema: ActionSchema) -> None:
        """Register (or replace) the schema for *action_type*."""
        key = _type_key(action_type)
        if key in self._schemas:
            logger.debug("Redefining action type %s", key)
        self._schemas[key] = schema

    def get(self, action_type: str) -> ActionSchema | None:
        return self._schemas.get(_type_key(action_type))

    @property
    def types(self) -> list[str]:
        return list(self._schemas)

    def __contains__(self, action_type: object) -> bool:
        return isinstance(action_type, str) and _type_key(action_type) in self._schemas

    def validate(self, action_type: str, data: dict[str, Any]) -> ValidationResult:
        """Check *data* against the schema registered for *action_type*.

        Rules, all accumulated into one error list:
          - the type must be registered;
          - every required field must be present, non-null and non-empty;
          - every provided field must be declared, of the declared kind, and
            a member of its enum when one is declared.

        ``None`` on an optional field counts as "not provided".
        """
        schema = self.get(action_type)
        if schema is None:
            return ValidationResult(False, [f"Unknown action type: {action_type}"])
        if not isinstance(data, dict):
            return ValidationResult(False, ["Action arguments must be an object"])

        errors: list[str] = []
        for name in schema.required:
            if data.get(name) is None or data.get(name) == "":
                errors.append(f"Missing required field: {name}")

        for name, value in data.items():
            if value is None:
                continue
            spec = schema.fields.get(name)
            if spec is None:
                errors.append(f"Unknown field: {name}")
                continue
            if not _KIND_CHECKS[spec.kind](value):
                errors.append(f"Field {name} must be {_article(spec.kind)} {spec.kind}")
            if spec.enum is not None and value not in spec.enum:
                allowed = ", ".join(str(v) for v in spec.enum)
                errors.append(f"Field {name} must be one of: {allowed}")

        return ValidationResult(not errors, errors)

    def apply_defaults(self, action_type: str, data: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of *data* with schema defaults filled in for absent fields."""
        schema = self.get(action_type)
        if schema is None:
            return dict(data)
        merged = {k: v for k, v in data.items() if v is not None}
        for name, spec in schema.fields.items():
            if name not in merged and spec.default is not None:
                merged[name] = spec.default
        return merged

    def tool_definitions(self, action_types: list[str] | None = None) -> list[dict[str, Any]]:
        """Render schemas as function-calling tool definitions.

        When *action_types* is given only those types are offered, in the
        registry's order.
        """
        wanted = None if action_types is None else {_type_key(t) for t in action_types}
        tools = []
        for name, schema in self._schemas.items():
            if wanted is not None and name not in wanted:
                continue
            tools.append(
                {
                    "name": name,
                    "description": schema.description,
                    "parameters": {
                        "type": "object",
                        "properties": {
                            fname: spec.to_json_schema()
                            for fname, spec in schema.fields.items()
                        },
                        "required": list(schema.required),
                    },
                }
            )
        return tools


def _type_key(action_type: str) -> str:
    return action_type.value if isinstance(action_type, ActionType) else action_type


def _article(kind: str) -> str:
    return "an" if kind[0] in "aeiou" else "a"


# ── Built-in action types ────────────────────────────────────────────

_DATE = "YYYY-MM-DD format"
_TIME = "HH:MM 24-hour format"


def default_registry() -> ActionRegistry:
    """Registry with the four built-in action types."""
    registry = ActionRegistry()

    registry.define(
        ActionType.BOOK_APPOINTMENT,
        ActionSchema(
            description="Book an appointment or meeting with someone",
            fields={
                "person": FieldSpec("string", "The person to meet with"),
                "date": FieldSpec("string", f"The date of the appointment ({_DATE})"),
                "time": FieldSpec("string", f"The time of the appointment ({_TIME})"),
                "duration": FieldSpec("integer", "The duration of the meeting in minutes", default=30),
                "purpose": FieldSpec("string", "The purpose or topic of the meeting"),
                "location": FieldSpec(
                    "string",
                    "The location of the meeting (physical location or virtual)",
                    default="Virtual",
                ),
            },
            required=("person", "date", "time"),
        ),
    )

    registry.define(
        ActionType.TAKE_NOTE,
        ActionSchema(
            description="Create a note or save information",
            fields={
                "title": FieldSpec("string", "Title for the note"),
                "content": FieldSpec("string", "Content of the note"),
                "category": FieldSpec(
                    "string",
                    "Category for organizing the note",
                    enum=("personal", "work", "ideas", "tasks", "other"),
                    default="other",
                ),
                "tags": FieldSpec("array", "Tags for the note", extra={"items": {"type": "string"}}),
            },
            required=("content",),
        ),
    )

    registry.define(
        ActionType.SET_REMINDER,
        ActionSchema(
            description="Set a reminder for a future time",
            fields={
                "title": FieldSpec("string", "Title for the reminder"),
                "date": FieldSpec("string", f"The date for the reminder ({_DATE})"),
                "time": FieldSpec("string", f"The time for the reminder ({_TIME})"),
                "description": FieldSpec("string", "Additional details for the reminder"),
                "priority": FieldSpec(
                    "string",
                    "Priority level of the reminder",
                    enum=("low", "medium", "high"),
                    default="medium",
                ),
                "recurrence": FieldSpec(
                    "string",
                    "How often the reminder should repeat",
                    enum=("none", "daily", "weekly", "monthly"),
                    default="none",
                ),
            },
            required=("title", "date", "time"),
        ),
    )

    registry.define(
        ActionType.SEARCH_KNOWLEDGE,
        ActionSchema(
            description="Search for specific information in the knowledge base",
            fields={
                "query": FieldSpec("string", "The search query"),
                "filters": FieldSpec(
                    "object",
                    "Metadata filters for the search",
                    extra={
                        "properties": {
                            "category": {"type": "string", "description": "Category to search within"},
                            "author": {"type": "string", "description": "Author of the content"},
                        },
                    },
                ),
                "maxResults": FieldSpec("integer", "Maximum number of results to return", default=5),
            },
            required=("query",),
        ),
    )

    return registry
