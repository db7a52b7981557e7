"""Shared data types for Mastermind."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any, Union


def canonical_json(value: Any) -> str:
    """Stable JSON encoding used for tool-call identity."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


# ---------------------------------------------------------------------------
# Conversation parts
# ---------------------------------------------------------------------------

class Role(enum.Enum):
    """Author of a conversation turn."""

    USER = "user"
    MODEL = "model"
    TOOL = "tool"


@dataclass
class TextPart:
    text: str


@dataclass
class InlineData:
    """Base64-encoded binary part (e.g. an image from the active note)."""

    mime_type: str
    data: str


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, boolean, array, object
    description: str = ""
    required: bool = True


@dataclass
class ToolCall:
    """A function invocation requested by the model."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, str]:
        """``(name, canonical-arguments)`` key used for loop detection."""
        return self.name, canonical_json(self.arguments)


class ToolStatus(enum.Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ToolResult:
    """Normalized result of a tool execution."""

    status: ToolStatus
    payload: Any = None
    tool: str = ""

    @property
    def success(self) -> bool:
        return self.status is ToolStatus.SUCCESS

    @classmethod
    def ok(cls, payload: Any, tool: str = "") -> ToolResult:
        return cls(status=ToolStatus.SUCCESS, payload=payload, tool=tool)

    @classmethod
    def error(cls, message: str, tool: str = "") -> ToolResult:
        return cls(
            status=ToolStatus.ERROR, payload={"message": message}, tool=tool,
        )

    def to_response(self) -> dict[str, Any]:
        """Body of the ``functionResponse`` part sent back to the model."""
        return {"content": {"status": self.status.value, "result": self.payload}}


Part = Union[TextPart, InlineData, ToolCall, ToolResult]


@dataclass
class Turn:
    """One exchange unit: user input, model output, or tool results."""

    role: Role
    parts: list[Part] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))


@dataclass
class Attachment:
    """Multimodal input sent alongside the user message."""

    mime_type: str
    data: str


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AccessToken:
    """Short-lived bearer token. ``expires_at`` is a Unix timestamp."""

    value: str
    expires_at: float

    def is_valid(self, now: float, margin: float) -> bool:
        return self.expires_at - now > margin


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class FunctionCall:
    call: ToolCall


StreamEvent = Union[TextDelta, ReasoningDelta, FunctionCall]


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Structured diagnostic events emitted by the agent loop."""

    # Chat lifecycle
    CHAT_STARTED = "chat.started"
    CHAT_DONE = "chat.done"
    CHAT_FAILED = "chat.failed"
    CHAT_CANCELLED = "chat.cancelled"

    # Model requests
    REQUEST_STARTED = "request.started"
    REQUEST_FAILED = "request.failed"
    FALLBACK = "request.fallback"
    STREAM_CLOSED = "stream.closed"

    # Credentials
    TOKEN_REFRESHED = "token.refreshed"

    # Tools
    TOOL_EXECUTING = "tool.executing"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"
    LOOP_DETECTED = "tool.loop_detected"


@dataclass
class AgentEvent:
    """Diagnostic event, delivered on ``ChatResponse.diagnostics`` and the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Progress records
# ---------------------------------------------------------------------------

class ActionStatus(enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ToolAction:
    """A tool invocation as shown to the caller."""

    tool: str
    input: dict[str, Any]
    status: ActionStatus = ActionStatus.PENDING
    output: Any = None


@dataclass
class ChatResponse:
    """Progress update emitted by ``AgentLoop.chat``.

    ``text`` and ``reasoning_text`` are cumulative over the whole chat
    invocation; ``actions`` holds the tool activity of this update only.
    """

    text: str = ""
    reasoning_text: str = ""
    is_reasoning: bool = False
    actions: list[ToolAction] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    diagnostics: list[AgentEvent] = field(default_factory=list)
