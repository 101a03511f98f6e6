"""Tests for the append-only run context."""

import pytest

from shipline.pipeline.context import RunContext


class TestRunContext:
    def test_seeded_with_inputs(self):
        ctx = RunContext({"environment": "preview"})
        assert ctx["environment"] == "preview"
        assert len(ctx) == 1
        assert dict(ctx) == {"environment": "preview"}

    def test_empty(self):
        ctx = RunContext()
        assert "anything" not in ctx
        assert ctx.get("anything") is None

    def test_publish_qualifies_keys(self):
        ctx = RunContext()
        ctx.publish("build", {"tag": "v1", "stdout": "done"})
        assert ctx["build.tag"] == "v1"
        assert ctx["build.stdout"] == "done"

    def test_publish_refuses_overwrite(self):
        ctx = RunContext()
        ctx.publish("build", {"tag": "v1"})
        with pytest.raises(KeyError, match="build.tag"):
            ctx.publish("build", {"tag": "v2"})
        assert ctx["build.tag"] == "v1"

    def test_input_cannot_be_shadowed(self):
        ctx = RunContext({"build.tag": "pinned"})
        with pytest.raises(KeyError):
            ctx.publish("build", {"tag": "other"})

    def test_read_only_mapping(self):
        ctx = RunContext({"a": "1"})
        with pytest.raises(TypeError):
            ctx["a"] = "2"  # type: ignore[index]

    def test_caller_mapping_not_aliased(self):
        seed = {"a": "1"}
        ctx = RunContext(seed)
        ctx.publish("s", {"x": "y"})
        assert seed == {"a": "1"}
