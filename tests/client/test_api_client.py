"""Tests for the HTTP client wrapper."""

import httpx
import pytest

from gifts.client.api import NETWORK_MESSAGE, TIMEOUT_MESSAGE, ApiError, GiftsApiClient, TokenStore


class Recorder:
    def __init__(self) -> None:
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


def make_client(handler, token: str | None = None, recorder: Recorder | None = None) -> GiftsApiClient:
    recorder = recorder or Recorder()
    return GiftsApiClient(
        "http://test/api",
        TokenStore(token),
        transport=httpx.MockTransport(handler),
        sleep=recorder.sleep,
    )


class TestRequests:
    async def test_get_with_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["query"] = dict(request.url.params)
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler, token="abc") as client:
            assert await client.get("/memories", {"page": 2}) == {"ok": True}
        assert seen == {"path": "/api/memories", "auth": "Bearer abc", "query": {"page": "2"}}

    async def test_no_token_no_header(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "Authorization" not in request.headers
            return httpx.Response(200, json={})

        async with make_client(handler) as client:
            await client.get("/health")

    async def test_empty_body(self):
        async with make_client(lambda request: httpx.Response(204)) as client:
            assert await client.delete("/notifications") is None


class TestErrors:
    async def test_detail_message(self):
        async with make_client(lambda request: httpx.Response(400, json={"detail": "bad input"})) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.post("/memories", {})
        assert exc_info.value.status == 400
        assert exc_info.value.message == "bad input"
        assert exc_info.value.details == {"detail": "bad input"}

    async def test_error_key(self):
        async with make_client(lambda request: httpx.Response(409, json={"error": "taken"})) as client:
            with pytest.raises(ApiError, match="taken"):
                await client.get("/x")

    async def test_non_json_error(self):
        async with make_client(lambda request: httpx.Response(502, text="<html>bad gateway</html>")) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.get("/x")
        assert exc_info.value.message == "Request failed with status 502"
        assert exc_info.value.details == {"raw": "<html>bad gateway</html>"}


class TestRetries:
    async def test_read_retried_once(self):
        calls = {"n": 0}
        recorder = Recorder()

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler, recorder=recorder) as client:
            assert await client.get("/x") == {"ok": True}
        assert calls["n"] == 2
        assert recorder.sleeps == [0.18]

    async def test_read_timeout_becomes_408(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.get("/x")
        assert exc_info.value.status == 408
        assert exc_info.value.message == TIMEOUT_MESSAGE

    async def test_write_not_retried(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.post("/memories", {"title": "x"})
        assert calls["n"] == 1
        assert exc_info.value.status == 503
        assert exc_info.value.message == NETWORK_MESSAGE

    async def test_http_errors_not_retried(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(500, json={"detail": "boom"})

        async with make_client(handler) as client:
            with pytest.raises(ApiError):
                await client.get("/x")
        assert calls["n"] == 1
