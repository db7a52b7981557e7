"""HTTP transport used by the model adapters and the credential broker.

The agent core only talks to the network through the ``Transport``
protocol, so tests (and hosts with their own HTTP stack) can script it.
``HttpxTransport`` is the default implementation on ``httpx.AsyncClient``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

import httpx

from mastermind.errors import TransportError

_logger = logging.getLogger(__name__)

# Error bodies are truncated to this many chars in exception messages
_MAX_ERROR_BODY = 2000


@dataclass
class TransportResponse:
    """A fully buffered HTTP response."""

    status_code: int
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


class Transport(Protocol):
    """What the core needs from an HTTP stack."""

    async def request(
        self, url: str, headers: dict[str, str], body: bytes,
    ) -> TransportResponse:
        """POST *body* and return the buffered response (any status)."""
        ...

    def stream(
        self, url: str, headers: dict[str, str], body: bytes,
    ) -> AsyncIterator[bytes]:
        """POST *body* and yield raw response chunks.

        Raises ``TransportError`` before the first chunk when the status
        is not 2xx.
        """
        ...


def encode_json(payload: Any) -> bytes:
    return json.dumps(payload).encode("utf-8")


def http_error(status_code: int, body: str, model: str = "", region: str = "") -> TransportError:
    """Build a ``TransportError`` for a non-success HTTP status."""
    if len(body) > _MAX_ERROR_BODY:
        body = body[:_MAX_ERROR_BODY] + "..."
    return TransportError(
        f"HTTP Error {status_code}: {body}",
        status_code=status_code,
        body=body,
        model=model,
        region=region,
    )


class HttpxTransport:
    """``Transport`` backed by a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        timeout: float = 120,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30, read=300),
        )

    async def request(
        self, url: str, headers: dict[str, str], body: bytes,
    ) -> TransportResponse:
        _logger.debug("POST %s", url)
        try:
            resp = await self._client.post(url, headers=headers, content=body)
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {type(e).__name__}: {e}") from e
        return TransportResponse(status_code=resp.status_code, body=resp.content)

    async def stream(
        self, url: str, headers: dict[str, str], body: bytes,
    ) -> AsyncIterator[bytes]:
        _logger.debug("POST (stream) %s", url)
        try:
            async with self._client.stream(
                "POST", url, headers=headers, content=body,
            ) as resp:
                if resp.status_code >= 300:
                    raw = await resp.aread()
                    raise http_error(
                        resp.status_code, raw.decode("utf-8", errors="replace"),
                    )
                async for chunk in resp.aiter_bytes():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as e:
            raise TransportError(
                f"Stream failed: {type(e).__name__}: {e}",
            ) from e

    async def close(self) -> None:
        await self._client.aclose()
