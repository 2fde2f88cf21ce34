"""Tests for Context."""

import pytest

from crewflow.core.context import Context, format_template


class TestContextGetSet:
    def test_set_and_get(self):
        ctx = Context()
        ctx.set("research", "notes")
        assert ctx.get("research") == "notes"

    def test_get_missing_returns_default(self):
        ctx = Context()
        assert ctx.get("missing") is None
        assert ctx.get("missing", 42) == 42

    def test_inputs_visible(self):
        ctx = Context({"topic": "ai"})
        assert ctx.get("topic") == "ai"
        assert "topic" in ctx
        assert len(ctx) == 0

    def test_results_shadow_inputs(self):
        ctx = Context({"a": "input"})
        ctx.set("a", "result")
        assert ctx.get("a") == "result"


class TestContextSnapshot:
    def test_snapshot_is_read_only(self):
        ctx = Context()
        ctx.set("a", 1)
        snap = ctx.snapshot()
        with pytest.raises(TypeError):
            snap["a"] = 2  # type: ignore[index]

    def test_snapshot_is_a_copy(self):
        ctx = Context()
        ctx.set("a", 1)
        snap = ctx.snapshot()
        ctx.set("b", 2)
        assert "b" not in snap

    def test_snapshot_limited_to_task_ids(self):
        ctx = Context({"topic": "ai"})
        ctx.set("a", 1)
        ctx.set("b", 2)
        snap = ctx.snapshot(["a", "missing"])
        assert dict(snap) == {"topic": "ai", "a": 1}


class TestFormatTemplate:
    def test_simple_replacement(self):
        ctx = Context({"name": "World"})
        assert ctx.format_template("Hello {name}!") == "Hello World!"

    def test_missing_key_preserved(self):
        assert format_template("Hello {missing}!", {}) == "Hello {missing}!"

    def test_dotted_key_into_mapping(self):
        values = {"research": {"summary": "short"}}
        assert format_template("{research.summary}", values) == "short"

    def test_dotted_key_missing_part_preserved(self):
        values = {"research": {"summary": "short"}}
        assert format_template("{research.other}", values) == "{research.other}"

    def test_flat_dotted_key_wins(self):
        assert format_template("{a.b}", {"a.b": "flat"}) == "flat"

    def test_non_string_values(self):
        assert format_template("n={n}", {"n": 3}) == "n=3"
