"""Tests for StreamDecoder and ThinkingSplitter."""

from __future__ import annotations

import json

import pytest

from mastermind.errors import ModelBlockedError
from mastermind.llm.stream import StreamDecoder, ThinkingSplitter
from mastermind.types import FunctionCall, ReasoningDelta, TextDelta, ToolCall


def _sse(*frames: dict) -> bytes:
    return b"".join(b"data: " + json.dumps(f, ensure_ascii=False).encode("utf-8") + b"\n\n" for f in frames)


def _text(text: str, **extra) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text, **extra}]}}]}


def _call(name: str, args: dict) -> dict:
    return {"candidates": [{"content": {"parts": [
        {"functionCall": {"name": name, "args": args}},
    ]}}]}


def _decode_all(*chunks: bytes) -> list:
    decoder = StreamDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.finish())
    return events


def _merge(events: list) -> list:
    """Coalesce adjacent deltas of the same kind."""
    merged: list = []
    for ev in events:
        if merged and type(ev) is type(merged[-1]) and isinstance(ev, (TextDelta, ReasoningDelta)):
            merged[-1] = type(ev)(merged[-1].text + ev.text)
        else:
            merged.append(ev)
    return merged


STREAM = _sse(
    _text("Let me look. "),
    _text("```thinking\nThe user wants a.md"),
    _text(" (naïve résumé ✓ 日本)\n```"),
    _text("Reading now."),
    _call("read_file", {"path": "a.md"}),
    {"candidates": [{"content": {"parts": []}, "finishReason": "STOP"}],
     "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 7, "totalTokenCount": 19}},
)


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------

class TestFraming:
    def test_whole_stream(self):
        events = _merge(_decode_all(STREAM))
        assert events == [
            TextDelta("Let me look. "),
            ReasoningDelta("\nThe user wants a.md (naïve résumé ✓ 日本)\n"),
            TextDelta("Reading now."),
            FunctionCall(ToolCall("read_file", {"path": "a.md"})),
        ]

    def test_every_byte_boundary(self):
        expected = _decode_all(STREAM)
        for cut in range(1, len(STREAM)):
            assert _decode_all(STREAM[:cut], STREAM[cut:]) == expected, cut

    def test_byte_at_a_time(self):
        chunks = [STREAM[i:i + 1] for i in range(len(STREAM))]
        assert _decode_all(*chunks) == _decode_all(STREAM)

    def test_unterminated_final_line(self):
        raw = b"data: " + json.dumps(_text("tail")).encode()
        assert _decode_all(raw) == [TextDelta("tail")]

    def test_crlf_comments_and_done(self):
        raw = (
            b": keep-alive\r\n\r\n"
            b"event: message\r\n"
            b"data: " + json.dumps(_text("hi")).encode() + b"\r\n\r\n"
            b"data: [DONE]\r\n\r\n"
        )
        assert _decode_all(raw) == [TextDelta("hi")]

    def test_malformed_frame_skipped(self, caplog):
        decoder = StreamDecoder()
        raw = b"data: {broken\n\n" + _sse(_text("ok"))
        with caplog.at_level("WARNING", logger="mastermind.llm.stream"):
            events = decoder.feed(raw) + decoder.finish()
        assert events == [TextDelta("ok")]
        assert decoder.skipped_frames == 1
        assert decoder.frames == 1
        assert "malformed" in caplog.text

    def test_usage_recorded(self):
        decoder = StreamDecoder()
        decoder.feed(STREAM)
        decoder.finish()
        assert decoder.usage == {"input": 12, "output": 7, "total": 19}

    def test_function_call_without_args(self):
        raw = _sse({"candidates": [{"content": {"parts": [
            {"functionCall": {"name": "list_files"}},
        ]}}]})
        assert _decode_all(raw) == [FunctionCall(ToolCall("list_files", {}))]

    def test_frame_without_candidates(self):
        assert _decode_all(_sse({"usageMetadata": {"totalTokenCount": 3}})) == []

    @pytest.mark.parametrize("odd", [
        {"promptFeedback": "x"},
        {"candidates": ["x"]},
        {"candidates": {"content": {}}},
        {"candidates": [{"content": "x"}]},
        {"candidates": [{"content": {"parts": "oops"}}]},
        {"candidates": [{"content": {"parts": ["oops"]}}]},
        {"candidates": [{"content": {"parts": [{"text": 42}]}}]},
        {"candidates": [{"content": {"parts": [{"functionCall": "read_file"}]}}]},
        {"candidates": [{"content": {"parts": [{"functionCall": {"args": {}}}]}}]},
    ])
    def test_wrong_shape_skipped(self, odd, caplog):
        decoder = StreamDecoder()
        with caplog.at_level("WARNING", logger="mastermind.llm.stream"):
            events = decoder.feed(_sse(odd, _text("still here"))) + decoder.finish()
        assert events == [TextDelta("still here")]
        assert decoder.skipped_frames == 1
        assert "Skipping stream" in caplog.text

    def test_bad_part_does_not_drop_neighbours(self):
        raw = _sse({"candidates": [{"content": {"parts": ["oops", {"text": "ok"}]}}]})
        assert _decode_all(raw) == [TextDelta("ok")]

    @pytest.mark.parametrize("args", [["a.md"], "a.md", 3])
    def test_non_object_args_become_empty(self, args):
        raw = _sse({"candidates": [{"content": {"parts": [
            {"functionCall": {"name": "read_file", "args": args}},
        ]}}]})
        assert _decode_all(raw) == [FunctionCall(ToolCall("read_file", {}))]

    def test_malformed_usage_ignored(self):
        decoder = StreamDecoder()
        decoder.feed(_sse({"usageMetadata": {"promptTokenCount": "many"}}, _text("hi")))
        decoder.finish()
        assert decoder.usage == {}

    def test_unhashable_finish_reason(self):
        raw = _sse({"candidates": [{"content": {"parts": [{"text": "a"}]}, "finishReason": {}}]})
        assert _decode_all(raw) == [TextDelta("a")]


class TestAsyncDecode:
    async def test_decode(self):
        async def chunks():
            yield STREAM[:10]
            yield STREAM[10:]

        decoder = StreamDecoder()
        events = [e async for e in decoder.decode(chunks())]
        assert events == _decode_all(STREAM)

    async def test_not_restartable(self):
        async def chunks():
            yield _sse(_text("a"))

        decoder = StreamDecoder()
        [e async for e in decoder.decode(chunks())]
        with pytest.raises(RuntimeError):
            [e async for e in decoder.decode(chunks())]


# ---------------------------------------------------------------------------
# Reasoning classification
# ---------------------------------------------------------------------------

class TestThinkingDelimiters:
    def test_delimiter_split_across_frames(self):
        raw = _sse(_text("Answer soon ``"), _text("`think"), _text("ing\nstep one"))
        events = _merge(_decode_all(raw))
        assert events == [TextDelta("Answer soon "), ReasoningDelta("\nstep one")]

    def test_state_carries_across_frames(self):
        raw = _sse(_text("```thinking\na"), _text("b"), _text("c```d"))
        events = _merge(_decode_all(raw))
        assert events == [ReasoningDelta("\nabc"), TextDelta("d")]

    def test_close_split_across_frames(self):
        raw = _sse(_text("```thinking\nx`"), _text("``after"))
        events = _merge(_decode_all(raw))
        assert events == [ReasoningDelta("\nx"), TextDelta("after")]

    def test_thought_flag(self):
        raw = _sse(_text("pondering", thought=True), _text("answer"))
        assert _decode_all(raw) == [ReasoningDelta("pondering"), TextDelta("answer")]

    def test_ordinary_code_fence_is_text(self):
        raw = _sse(_text("```python\nprint(1)\n```"))
        assert _merge(_decode_all(raw)) == [TextDelta("```python\nprint(1)\n```")]

    def test_held_text_flushed_before_function_call(self):
        raw = _sse(_text("see `"), _call("get_tags", {}))
        assert _decode_all(raw) == [
            TextDelta("see "),
            TextDelta("`"),
            FunctionCall(ToolCall("get_tags", {})),
        ]

    def test_in_thinking_exposed(self):
        decoder = StreamDecoder()
        decoder.feed(_sse(_text("```thinking\nhmm")))
        assert decoder.in_thinking is True


class TestThinkingSplitter:
    def test_plain_text(self):
        splitter = ThinkingSplitter()
        assert splitter.feed("hello") == [TextDelta("hello")]
        assert splitter.flush() == []

    def test_partial_marker_held(self):
        splitter = ThinkingSplitter()
        assert splitter.feed("a``") == [TextDelta("a")]
        assert splitter.feed("b") == [TextDelta("``b")]

    def test_flush_releases_partial_marker(self):
        splitter = ThinkingSplitter()
        splitter.feed("end ```think")
        assert splitter.flush() == [TextDelta("```think")]


# ---------------------------------------------------------------------------
# Safety
# ---------------------------------------------------------------------------

class TestSafety:
    def test_prompt_blocked(self):
        raw = _sse({"promptFeedback": {"blockReason": "SAFETY"}})
        with pytest.raises(ModelBlockedError, match="SAFETY"):
            _decode_all(raw)

    def test_candidate_blocked(self):
        raw = _sse({"candidates": [{"finishReason": "PROHIBITED_CONTENT"}]})
        with pytest.raises(ModelBlockedError, match="PROHIBITED_CONTENT"):
            _decode_all(raw)

    def test_max_tokens_is_not_blocked(self):
        raw = _sse({"candidates": [{
            "content": {"parts": [{"text": "cut"}]},
            "finishReason": "MAX_TOKENS",
        }]})
        assert _decode_all(raw) == [TextDelta("cut")]
