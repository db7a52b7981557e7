"""Shared fakes for the Mastermind test suite."""

from __future__ import annotations

import asyncio
import json
from collections import deque
from typing import Any, AsyncIterator
from urllib.parse import parse_qs

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from mastermind.llm.credentials import CredentialBroker
from mastermind.llm.transport import TransportResponse


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

class ScriptedTransport:
    """Replays canned responses in order and records every call.

    ``add_stream`` takes a list of raw chunks, or an exception that is
    raised before the first chunk.  Exceptions inside the chunk list are
    raised mid-stream.
    """

    def __init__(self) -> None:
        self.requests: list[tuple[str, dict[str, str], bytes]] = []
        self.streams: list[tuple[str, dict[str, str], bytes]] = []
        self._responses: deque[Any] = deque()
        self._streams: deque[Any] = deque()

    def add_response(self, status_code: int, body: Any = b"") -> None:
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self._responses.append(TransportResponse(status_code, body))

    def add_stream(self, chunks: list[bytes] | Exception) -> None:
        self._streams.append(chunks)

    def stream_bodies(self) -> list[dict[str, Any]]:
        return [json.loads(body) for _, _, body in self.streams]

    async def request(
        self, url: str, headers: dict[str, str], body: bytes,
    ) -> TransportResponse:
        self.requests.append((url, headers, body))
        if not self._responses:
            raise AssertionError(f"Unexpected request to {url}")
        item = self._responses.popleft()
        if isinstance(item, Exception):
            raise item
        return item

    async def stream(
        self, url: str, headers: dict[str, str], body: bytes,
    ) -> AsyncIterator[bytes]:
        self.streams.append((url, headers, body))
        if not self._streams:
            raise AssertionError(f"Unexpected stream to {url}")
        item = self._streams.popleft()
        if isinstance(item, Exception):
            raise item
        for chunk in item:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


class TokenEndpoint:
    """Fake OAuth token endpoint issuing ``tok-1``, ``tok-2``, ..."""

    def __init__(self, expires_in: int = 3600, delay: float = 0) -> None:
        self.expires_in = expires_in
        self.delay = delay
        self.calls = 0
        self.assertions: list[str] = []
        self.status_code = 200
        self.error_body = ""

    async def request(
        self, url: str, headers: dict[str, str], body: bytes,
    ) -> TransportResponse:
        self.calls += 1
        form = parse_qs(body.decode("ascii"))
        self.assertions.append(form["assertion"][0])
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.status_code != 200:
            return TransportResponse(self.status_code, self.error_body.encode())
        payload = {
            "access_token": f"tok-{self.calls}",
            "expires_in": self.expires_in,
            "token_type": "Bearer",
        }
        return TransportResponse(200, json.dumps(payload).encode())

    def stream(self, url: str, headers: dict[str, str], body: bytes):
        raise AssertionError("Token endpoint does not stream")


def sse(*frames: dict[str, Any]) -> bytes:
    """Encode frames the way ``streamGenerateContent?alt=sse`` does."""
    return b"".join(
        b"data: " + json.dumps(frame).encode("utf-8") + b"\r\n\r\n"
        for frame in frames
    )


def text_frame(text: str, **extra: Any) -> dict[str, Any]:
    part: dict[str, Any] = {"text": text, **extra}
    return {"candidates": [{"content": {"role": "model", "parts": [part]}}]}


def call_frame(name: str, args: dict[str, Any]) -> dict[str, Any]:
    part = {"functionCall": {"name": name, "args": args}}
    return {"candidates": [{"content": {"role": "model", "parts": [part]}}]}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def service_account_json(rsa_key: rsa.RSAPrivateKey) -> str:
    pem = rsa_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    return json.dumps({
        "type": "service_account",
        "project_id": "demo-project",
        "client_email": "agent@demo-project.iam.gserviceaccount.com",
        "private_key": pem,
    })


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    return TokenEndpoint()


@pytest.fixture
def broker(service_account_json: str, token_endpoint: TokenEndpoint) -> CredentialBroker:
    return CredentialBroker(service_account_json, token_endpoint)


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def frames():
    """Frame builders: ``frames.sse``, ``frames.text``, ``frames.call``."""

    class _Frames:
        sse = staticmethod(sse)
        text = staticmethod(text_frame)
        call = staticmethod(call_frame)

    return _Frames
