"""Tests for the Action Registry: schemas, validation, defaults and tool definitions."""

from __future__ import annotations

import pytest

from src.tools.registry import (
    ActionRegistry,
    ActionSchema,
    ActionType,
    FieldSpec,
    default_registry,
)


@pytest.fixture
def registry() -> ActionRegistry:
    return default_registry()


class TestValidation:
    def test_valid_booking(self, registry):
        result = registry.validate(
            "book_appointment", {"person": "Alex", "date": "2025-03-01", "time": "14:00"},
        )
        assert result.valid is True
        assert result.errors == []

    def test_unknown_action_type(self, registry):
        result = registry.validate("order_pizza", {})
        assert result.valid is False
        assert result.errors == ["Unknown action type: order_pizza"]

    @pytest.mark.parametrize("bad", [None, ""])
    def test_required_field_null_or_empty(self, registry, bad):
        result = registry.validate("take_note", {"content": bad})
        assert result.valid is False
        assert "Missing required field: content" in result.errors

    def test_required_field_missing(self, registry):
        result = registry.validate("set_reminder", {"title": "Call mom", "date": "2025-03-01"})
        assert result.valid is False
        assert result.errors == ["Missing required field: time"]

    def test_wrong_primitive_type(self, registry):
        result = registry.validate(
            "book_appointment",
            {"person": "Alex", "date": "2025-03-01", "time": "14:00", "duration": "thirty"},
        )
        assert result.valid is False
        assert "Field duration must be an integer" in result.errors

    def test_bool_is_not_an_integer(self, registry):
        result = registry.validate(
            "book_appointment",
            {"person": "Alex", "date": "2025-03-01", "time": "14:00", "duration": True},
        )
        assert result.valid is False

    def test_enum_violation(self, registry):
        result = registry.validate(
            "set_reminder",
            {"title": "Standup", "date": "2025-03-01", "time": "09:00", "priority": "urgent"},
        )
        assert result.valid is False
        assert "Field priority must be one of: low, medium, high" in result.errors

    def test_unknown_field_rejected(self, registry):
        result = registry.validate("take_note", {"content": "x", "colour": "red"})
        assert result.valid is False
        assert "Unknown field: colour" in result.errors

    def test_errors_accumulate(self, registry):
        result = registry.validate("book_appointment", {"duration": "long"})
        assert result.valid is False
        assert len(result.errors) == 4

    def test_null_optional_field_is_not_provided(self, registry):
        result = registry.validate("take_note", {"content": "x", "title": None})
        assert result.valid is True

    def test_validate_does_not_mutate_input(self, registry):
        data = {"content": "x"}
        registry.validate("take_note", data)
        assert data == {"content": "x"}


class TestDefaults:
    def test_apply_defaults_fills_absent_fields(self, registry):
        data = registry.apply_defaults(
            "book_appointment", {"person": "Alex", "date": "2025-03-01", "time": "14:00"},
        )
        assert data["duration"] == 30
        assert data["location"] == "Virtual"

    def test_apply_defaults_keeps_given_values(self, registry):
        data = registry.apply_defaults("take_note", {"content": "x", "category": "work"})
        assert data["category"] == "work"


class TestRegistry:
    def test_contains_accepts_enum_and_string(self, registry):
        assert "take_note" in registry
        assert ActionType.TAKE_NOTE in registry
        assert "order_pizza" not in registry

    def test_define_custom_type(self):
        registry = ActionRegistry()
        registry.define(
            "send_email",
            ActionSchema("Send an email", {"to": FieldSpec("string")}, required=("to",)),
        )
        assert registry.types == ["send_email"]
        assert registry.validate("send_email", {"to": "a@b.c"}).valid

    def test_schema_rejects_undeclared_required_field(self):
        with pytest.raises(ValueError):
            ActionSchema("Broken", {"a": FieldSpec("string")}, required=("b",))

    def test_tool_definitions_cover_all_types(self, registry):
        tools = registry.tool_definitions()
        assert [t["name"] for t in tools] == [t.value for t in ActionType]
        booking = tools[0]
        assert booking["parameters"]["required"] == ["person", "date", "time"]
        assert booking["parameters"]["properties"]["duration"]["type"] == "integer"

    def test_tool_definitions_subset(self, registry):
        tools = registry.tool_definitions(["set_reminder", ActionType.TAKE_NOTE])
        assert [t["name"] for t in tools] == ["take_note", "set_reminder"]
