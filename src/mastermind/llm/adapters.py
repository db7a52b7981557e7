"""Model adapters: one per Vertex AI wire dialect.

The agent loop is dialect-agnostic; it hands a ``ModelRequest`` to the
adapter chosen by ``select_adapter()`` and consumes ``StreamEvent``s.

  GeminiAdapter     SSE streaming ``streamGenerateContent`` (tools supported)
  AnthropicAdapter  Claude on Vertex, single-shot ``rawPredict``
  EndpointAdapter   custom deployed endpoint, single-shot ``predict``
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from mastermind.errors import EmptyResponseError, TransportError
from mastermind.types import (
    InlineData,
    Role,
    StreamEvent,
    TextPart,
    ToolCall,
    ToolResult,
    Turn,
)

from .stream import StreamDecoder, ThinkingSplitter
from .transport import Transport, encode_json, http_error

_logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "vertex-2023-10-16"

SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_ONLY_HIGH"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


# ---------------------------------------------------------------------------
# Request type
# ---------------------------------------------------------------------------

@dataclass
class ModelRequest:
    """Everything needed for a single model call."""

    model: str
    region: str
    project_id: str
    turns: list[Turn]
    system_instruction: str = ""
    tools: list[dict[str, Any]] = field(default_factory=list)
    temperature: float = 0.7
    max_output_tokens: int = 4096


def vertex_host(region: str) -> str:
    if region == "global":
        return "aiplatform.googleapis.com"
    return f"{region}-aiplatform.googleapis.com"


def vertex_base_url(project_id: str, region: str, api_version: str = "v1") -> str:
    return (
        f"https://{vertex_host(region)}/{api_version}"
        f"/projects/{project_id}/locations/{region}"
    )


def _auth_headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }


# ---------------------------------------------------------------------------
# Adapter base
# ---------------------------------------------------------------------------

class ModelAdapter(ABC):
    """Wire dialect for one family of models.

    Adapters are created per request; ``usage`` is populated once the
    event stream is exhausted.
    """

    name: str = ""
    supports_tools: bool = False

    def __init__(self) -> None:
        self.usage: dict[str, int] = {}

    def effective_region(self, request: ModelRequest) -> str:
        return request.region or "us-central1"

    @abstractmethod
    def build(self, request: ModelRequest) -> tuple[str, dict[str, Any]]:
        """Return ``(url, json_body)`` for *request*."""

    @abstractmethod
    def events(
        self, transport: Transport, request: ModelRequest, token: str,
    ) -> AsyncIterator[StreamEvent]:
        """Issue *request* and yield the decoded events."""


class SingleShotAdapter(ModelAdapter):
    """Base for dialects that return one buffered JSON answer."""

    async def events(
        self, transport: Transport, request: ModelRequest, token: str,
    ) -> AsyncIterator[StreamEvent]:
        url, body = self.build(request)
        region = self.effective_region(request)
        resp = await transport.request(url, _auth_headers(token), encode_json(body))
        if not resp.ok:
            raise http_error(resp.status_code, resp.text, request.model, region)
        try:
            data = resp.json()
        except ValueError:
            raise EmptyResponseError(
                f"Malformed response from {request.model} ({region})"
            ) from None

        text = self.extract_text(data)
        if not text:
            raise EmptyResponseError(
                f"No content returned by {request.model} ({region})"
            )
        splitter = ThinkingSplitter()
        for event in splitter.feed(text) + splitter.flush():
            yield event

    @abstractmethod
    def extract_text(self, data: Any) -> str:
        """Pull the answer text out of the decoded response body."""


# ---------------------------------------------------------------------------
# Gemini (SSE streaming)
# ---------------------------------------------------------------------------

def _gemini_part(part: Any) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, InlineData):
        return {"inlineData": {"mimeType": part.mime_type, "data": part.data}}
    if isinstance(part, ToolCall):
        return {"functionCall": {"name": part.name, "args": part.arguments}}
    if isinstance(part, ToolResult):
        return {
            "functionResponse": {"name": part.tool, "response": part.to_response()},
        }
    raise TypeError(f"Unsupported part type: {type(part).__name__}")


def gemini_contents(turns: list[Turn]) -> list[dict[str, Any]]:
    """Serialize turns into ``contents``; tool results travel as ``user``."""
    contents = []
    for turn in turns:
        role = "model" if turn.role is Role.MODEL else "user"
        contents.append({
            "role": role,
            "parts": [_gemini_part(p) for p in turn.parts],
        })
    return contents


class GeminiAdapter(ModelAdapter):
    name = "gemini"
    supports_tools = True

    def effective_region(self, request: ModelRequest) -> str:
        # Gemini 3 previews are only served from the global endpoint
        if "gemini-3" in request.model:
            return "global"
        return super().effective_region(request)

    @staticmethod
    def api_version(model: str) -> str:
        if "gemini-3" in model or any(
            tag in model for tag in ("preview", "exp", "beta")
        ):
            return "v1beta1"
        return "v1"

    def build(self, request: ModelRequest) -> tuple[str, dict[str, Any]]:
        base = vertex_base_url(
            request.project_id,
            self.effective_region(request),
            self.api_version(request.model),
        )
        url = (
            f"{base}/publishers/google/models/{request.model}"
            f":streamGenerateContent?alt=sse"
        )
        body: dict[str, Any] = {
            "contents": gemini_contents(request.turns),
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_output_tokens,
            },
            "safetySettings": SAFETY_SETTINGS,
        }
        if request.system_instruction:
            body["systemInstruction"] = {
                "parts": [{"text": request.system_instruction}],
            }
        if request.tools:
            body["tools"] = [{"functionDeclarations": request.tools}]
        return url, body

    async def events(
        self, transport: Transport, request: ModelRequest, token: str,
    ) -> AsyncIterator[StreamEvent]:
        url, body = self.build(request)
        _logger.debug("Gemini stream request: %s", url)
        decoder = StreamDecoder()
        chunks = transport.stream(url, _auth_headers(token), encode_json(body))
        try:
            async for event in decoder.decode(chunks):
                yield event
        except TransportError as e:
            e.model = e.model or request.model
            e.region = e.region or self.effective_region(request)
            raise
        finally:
            self.usage = decoder.usage
        if decoder.skipped_frames:
            _logger.warning(
                "Skipped %d malformed frame(s) from %s",
                decoder.skipped_frames, request.model,
            )


# ---------------------------------------------------------------------------
# Anthropic on Vertex (single-shot)
# ---------------------------------------------------------------------------

class AnthropicAdapter(SingleShotAdapter):
    name = "anthropic"

    def build(self, request: ModelRequest) -> tuple[str, dict[str, Any]]:
        base = vertex_base_url(request.project_id, self.effective_region(request))
        url = f"{base}/publishers/anthropic/models/{request.model}:rawPredict"

        messages: list[dict[str, Any]] = []
        for turn in request.turns:
            text = turn.text
            if not text:
                continue
            role = "assistant" if turn.role is Role.MODEL else "user"
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"] += "\n\n" + text
            else:
                messages.append({"role": role, "content": text})

        body: dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "messages": messages,
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
            "stream": False,
        }
        if request.system_instruction:
            body["system"] = request.system_instruction
        return url, body

    def extract_text(self, data: Any) -> str:
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            return ""
        return "".join(
            b["text"] for b in blocks
            if isinstance(b, dict)
            and b.get("type", "text") == "text"
            and isinstance(b.get("text"), str)
        )


# ---------------------------------------------------------------------------
# Custom endpoint (single-shot)
# ---------------------------------------------------------------------------

class EndpointAdapter(SingleShotAdapter):
    name = "endpoint"

    def build(self, request: ModelRequest) -> tuple[str, dict[str, Any]]:
        region = self.effective_region(request)
        resource = request.model
        if "/" not in resource:
            resource = (
                f"projects/{request.project_id}/locations/{region}"
                f"/endpoints/{request.model}"
            )
        url = f"https://{vertex_host(region)}/v1/{resource}:predict"

        lines = []
        if request.system_instruction:
            lines.append(f"System: {request.system_instruction}\n")
        for turn in request.turns:
            if turn.text:
                speaker = "Assistant" if turn.role is Role.MODEL else "User"
                lines.append(f"{speaker}: {turn.text}")
        lines.append("Assistant:")

        body = {
            "instances": [{"prompt": "\n".join(lines)}],
            "parameters": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_output_tokens,
                "topP": 0.95,
            },
        }
        return url, body

    def extract_text(self, data: Any) -> str:
        predictions = data.get("predictions") if isinstance(data, dict) else None
        if not isinstance(predictions, list) or not predictions:
            return ""
        first = predictions[0]
        if isinstance(first, str):
            return first
        if isinstance(first, dict):
            return str(first.get("content", ""))
        return ""


def select_adapter(model_id: str) -> ModelAdapter:
    """Pick the wire dialect for *model_id*."""
    if model_id.isdigit() or "/endpoints/" in model_id:
        return EndpointAdapter()
    if model_id.startswith("claude"):
        return AnthropicAdapter()
    return GeminiAdapter()
