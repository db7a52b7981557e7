"""Tests for HttpxTransport against httpx.MockTransport."""

import httpx
import pytest

from mastermind.errors import TransportError
from mastermind.llm.transport import HttpxTransport, http_error


def _transport(handler) -> HttpxTransport:
    return HttpxTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestRequest:
    async def test_buffered_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["authorization"]
            seen["body"] = request.content
            return httpx.Response(200, content=b'{"ok": true}')

        t = _transport(handler)
        resp = await t.request("https://example.test/x", {"Authorization": "Bearer t"}, b"{}")
        await t.close()

        assert resp.ok
        assert resp.json() == {"ok": True}
        assert seen == {"auth": "Bearer t", "body": b"{}"}

    async def test_error_status_is_returned(self):
        t = _transport(lambda request: httpx.Response(404, content=b"missing"))
        resp = await t.request("https://example.test/x", {}, b"")
        assert not resp.ok
        assert resp.text == "missing"

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        t = _transport(handler)
        with pytest.raises(TransportError, match="ConnectError"):
            await t.request("https://example.test/x", {}, b"")


class TestStream:
    async def test_chunks(self):
        t = _transport(lambda request: httpx.Response(200, content=b"data: {}\n\n"))
        chunks = [c async for c in t.stream("https://example.test/s", {}, b"")]
        assert b"".join(chunks) == b"data: {}\n\n"

    async def test_status_error_before_first_chunk(self):
        t = _transport(lambda request: httpx.Response(400, content=b"bad field"))
        with pytest.raises(TransportError) as exc_info:
            [c async for c in t.stream("https://example.test/s", {}, b"")]
        assert exc_info.value.status_code == 400
        assert "bad field" in str(exc_info.value)


class TestHttpError:
    def test_long_body_truncated(self):
        err = http_error(500, "x" * 5000, model="m", region="r")
        assert err.status_code == 500
        assert err.model == "m"
        assert len(err.body) < 2100
