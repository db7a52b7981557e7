"""Tests for LoopGuard."""

from mastermind.core.loop_guard import LoopGuard
from mastermind.types import ToolCall


def _read(path: str) -> ToolCall:
    return ToolCall(name="read_file", arguments={"path": path})


class TestLoopGuard:
    def test_three_identical_calls(self):
        guard = LoopGuard()
        assert guard.observe(_read("a.md")) is False
        assert guard.observe(_read("a.md")) is False
        assert guard.observe(_read("a.md")) is True

    def test_two_identical_then_distinct(self):
        guard = LoopGuard()
        results = [guard.observe(c) for c in (_read("a.md"), _read("a.md"), _read("b.md"))]
        assert results == [False, False, False]

    def test_distinct_arguments_never_trip(self):
        guard = LoopGuard()
        assert not any(guard.observe(_read(f"{i}.md")) for i in range(20))

    def test_alternating_loop_not_caught(self):
        guard = LoopGuard()
        calls = [_read("a.md"), _read("b.md")] * 5
        assert not any(guard.observe(c) for c in calls)

    def test_argument_order_is_irrelevant(self):
        guard = LoopGuard()
        guard.observe(ToolCall("move_file", {"oldPath": "a", "newPath": "b"}))
        guard.observe(ToolCall("move_file", {"newPath": "b", "oldPath": "a"}))
        assert guard.observe(ToolCall("move_file", {"oldPath": "a", "newPath": "b"}))

    def test_same_args_different_tool(self):
        guard = LoopGuard()
        guard.observe(ToolCall("read_file", {"path": "a"}))
        guard.observe(ToolCall("get_links", {"path": "a"}))
        assert guard.observe(ToolCall("read_file", {"path": "a"})) is False

    def test_minimums_enforced(self):
        guard = LoopGuard(window=1, threshold=1)
        assert guard.threshold == 3
        assert guard.observe(_read("a.md")) is False

    def test_window_is_bounded(self):
        guard = LoopGuard(window=5)
        for i in range(12):
            guard.observe(_read(f"{i}.md"))
        assert len(guard) == 5

    def test_reset(self):
        guard = LoopGuard()
        guard.observe(_read("a.md"))
        guard.observe(_read("a.md"))
        guard.reset()
        assert guard.observe(_read("a.md")) is False
