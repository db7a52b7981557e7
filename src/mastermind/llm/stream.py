"""Incremental decoding of ``streamGenerateContent?alt=sse`` responses.

The transport delivers ``data: <json>`` frames separated by blank lines,
split at arbitrary byte boundaries.  ``StreamDecoder`` re-assembles lines,
parses each frame, and turns its parts into ``StreamEvent``s:

  text part           -> TextDelta, or ReasoningDelta inside a
                         ```thinking ... ``` block
  thought part        -> ReasoningDelta
  functionCall part   -> FunctionCall
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator

from mastermind.errors import ModelBlockedError
from mastermind.types import (
    FunctionCall,
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    ToolCall,
)

_logger = logging.getLogger(__name__)

THINKING_OPEN = "```thinking"
THINKING_CLOSE = "```"

# Candidate finish reasons that mean the answer was withheld
_BLOCKED_FINISH_REASONS = frozenset({
    "SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII",
})


def _held_prefix(text: str, marker: str) -> int:
    """Length of the longest suffix of *text* that is a proper prefix of *marker*."""
    for size in range(min(len(marker) - 1, len(text)), 0, -1):
        if marker.startswith(text[-size:]):
            return size
    return 0


# ---------------------------------------------------------------------------
# ThinkingSplitter
# ---------------------------------------------------------------------------

class ThinkingSplitter:
    """Splits streamed text into answer text and ```thinking``` reasoning.

    Delimiter state survives across ``feed()`` calls.  When a fragment ends
    with a partial delimiter (e.g. ``"``th"``) that text is held back until
    the next fragment shows whether the delimiter completes.
    """

    def __init__(self) -> None:
        self.in_thinking = False
        self._pending = ""

    def feed(self, text: str) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        remaining = self._pending + text
        self._pending = ""

        while remaining:
            marker = THINKING_CLOSE if self.in_thinking else THINKING_OPEN
            idx = remaining.find(marker)
            if idx >= 0:
                self._push(events, remaining[:idx])
                remaining = remaining[idx + len(marker):]
                self.in_thinking = not self.in_thinking
                continue

            held = _held_prefix(remaining, marker)
            if held:
                self._pending = remaining[-held:]
                remaining = remaining[:-held]
            self._push(events, remaining)
            remaining = ""

        return events

    def flush(self) -> list[StreamEvent]:
        """Release held-back text as-is (end of text, or a non-text part)."""
        events: list[StreamEvent] = []
        self._push(events, self._pending)
        self._pending = ""
        return events

    def _push(self, events: list[StreamEvent], text: str) -> None:
        if not text:
            return
        if self.in_thinking:
            events.append(ReasoningDelta(text))
        else:
            events.append(TextDelta(text))


# ---------------------------------------------------------------------------
# StreamDecoder
# ---------------------------------------------------------------------------

class StreamDecoder:
    """One decode session over a single SSE response.

    Usage::

        decoder = StreamDecoder()
        async for event in decoder.decode(transport.stream(url, headers, body)):
            ...

    The synchronous ``feed()`` / ``finish()`` pair exposes the same state
    machine for callers that already hold the bytes.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._splitter = ThinkingSplitter()
        self._started = False
        self._finished = False
        self.usage: dict[str, int] = {}
        self.frames = 0
        self.skipped_frames = 0

    @property
    def in_thinking(self) -> bool:
        return self._splitter.in_thinking

    async def decode(
        self, chunks: AsyncIterable[bytes],
    ) -> AsyncIterator[StreamEvent]:
        """Yield events for *chunks* until the input ends."""
        if self._started:
            raise RuntimeError("StreamDecoder sessions cannot be restarted")
        self._started = True

        async for chunk in chunks:
            for event in self.feed(chunk):
                yield event
        for event in self.finish():
            yield event

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Consume one raw chunk and return the events it completes."""
        if self._finished:
            raise RuntimeError("StreamDecoder already finished")
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")

        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")

        events: list[StreamEvent] = []
        for line in lines:
            events.extend(self._process_line(line))
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush a trailing unterminated line and any held-back text."""
        if self._finished:
            return []
        self._finished = True

        events: list[StreamEvent] = []
        if self._buffer:
            events.extend(self._process_line(self._buffer))
            self._buffer = b""
        events.extend(self._splitter.flush())
        return events

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _process_line(self, raw: bytes) -> list[StreamEvent]:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line or line.startswith(":"):
            return []
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
        elif line.startswith(("event:", "id:", "retry:")):
            return []
        if not line or line == "[DONE]":
            return []

        try:
            frame = json.loads(line)
        except json.JSONDecodeError as e:
            self.skipped_frames += 1
            _logger.warning("Skipping malformed stream frame (%s): %.200s", e.msg, line)
            return []
        if not isinstance(frame, dict):
            self.skipped_frames += 1
            _logger.warning("Skipping non-object stream frame: %.200s", line)
            return []

        self.frames += 1
        return self._process_frame(frame)

    def _skip(self, what: str, raw: Any) -> list[StreamEvent]:
        self.skipped_frames += 1
        _logger.warning("Skipping stream %s: %.200s", what, raw)
        return []

    def _process_frame(self, frame: dict[str, Any]) -> list[StreamEvent]:
        feedback = frame.get("promptFeedback") or {}
        if not isinstance(feedback, dict):
            return self._skip("frame with malformed promptFeedback", feedback)
        if feedback.get("blockReason"):
            raise ModelBlockedError(
                f"Prompt blocked by safety filter: {feedback['blockReason']}"
            )

        usage = frame.get("usageMetadata")
        if isinstance(usage, dict) and usage:
            try:
                self.usage = _parse_usage(usage)
            except (TypeError, ValueError):
                _logger.warning("Ignoring malformed usageMetadata: %.200s", usage)

        candidates = frame.get("candidates") or []
        if not candidates:
            return []
        if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
            return self._skip("frame with malformed candidates", candidates)
        candidate = candidates[0]

        content = candidate.get("content") or {}
        parts = (content.get("parts") or []) if isinstance(content, dict) else None
        if not isinstance(parts, list):
            return self._skip("candidate with malformed content", content)

        events: list[StreamEvent] = []
        for part in parts:
            events.extend(self._process_part(part))

        reason = candidate.get("finishReason")
        if isinstance(reason, str) and reason in _BLOCKED_FINISH_REASONS:
            raise ModelBlockedError(f"Response blocked by safety filter: {reason}")
        return events

    def _process_part(self, part: Any) -> list[StreamEvent]:
        if not isinstance(part, dict):
            return self._skip("non-object part", part)

        if "functionCall" in part:
            call = part["functionCall"]
            if not isinstance(call, dict) or not isinstance(call.get("name"), str) or not call["name"]:
                return self._skip("function call without a name", call)
            args = call.get("args")
            if not isinstance(args, dict):
                if args is not None:
                    _logger.warning(
                        "Function call %s has non-object args, using {}: %.200s",
                        call["name"], args,
                    )
                args = {}
            events = self._splitter.flush()
            events.append(FunctionCall(ToolCall(name=call["name"], arguments=args)))
            return events

        text = part.get("text")
        if not isinstance(text, str):
            if text is not None:
                return self._skip("part with non-string text", part)
            return []
        if not text:
            return []
        if part.get("thought"):
            return self._splitter.flush() + [ReasoningDelta(text)]
        return self._splitter.feed(text)


def _parse_usage(raw: dict[str, Any]) -> dict[str, int]:
    usage = {
        "input": int(raw.get("promptTokenCount", 0)),
        "output": int(raw.get("candidatesTokenCount", 0)),
    }
    usage["total"] = int(raw.get("totalTokenCount", usage["input"] + usage["output"]))
    return usage
