"""HTTP client for the Gifts API.

Reads (GET/HEAD/OPTIONS) are retried once on network failure. Writes are
never retried here; create endpoints are idempotent on the server for a short
window, so the caller may retry them explicitly.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

logger = logging.getLogger(__name__)

READ_TIMEOUT_SECONDS = 60.0
WRITE_TIMEOUT_SECONDS = 45.0
READ_RETRIES = 1
RETRY_BACKOFF_SECONDS = 0.18
RETRYABLE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

TIMEOUT_MESSAGE = "请求超时，请稍后重试"
NETWORK_MESSAGE = "网络连接失败，请检查后端服务和网络后重试"


class ApiError(Exception):
    """A failed API call. ``status`` is the HTTP status or a synthetic 408/503."""

    def __init__(self, message: str, status: int, details: Any = None) -> None:  # noqa: ANN401
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details

    def __repr__(self) -> str:
        return f"ApiError(status={self.status}, message={self.message!r})"


class TokenStore:
    """Holds the bearer token for the current session."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token

    def get(self) -> str | None:
        return self._token

    def set(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


def _error_message(payload: Any, status: int) -> str:  # noqa: ANN401
    if isinstance(payload, dict):
        for key in ("detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return f"Request failed with status {status}"


class GiftsApiClient:
    """Thin async wrapper over ``httpx.AsyncClient`` that speaks the API's conventions.

    Args:
        base_url: API root, e.g. ``http://localhost:8787/api``.
        tokens: Where the bearer token lives; shared with ``AuthState``.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        base_url: str,
        tokens: TokenStore | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.tokens = tokens or TokenStore()
        self._sleep = sleep
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), transport=transport)

    async def __aenter__(self) -> GiftsApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        token = self.tokens.get()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,  # noqa: ANN401
        params: dict[str, Any] | None = None,
    ) -> Any:  # noqa: ANN401
        """Send one request and return the decoded JSON body (None when empty).

        Raises:
            ApiError: On non-2xx responses, timeouts (408) and network failures (503).
        """
        method = method.upper()
        retryable = method in RETRYABLE_METHODS
        retries = READ_RETRIES if retryable else 0
        timeout = READ_TIMEOUT_SECONDS if retryable else WRITE_TIMEOUT_SECONDS

        for attempt in range(retries + 1):
            try:
                response = await self._client.request(
                    method, path, json=json, params=params, headers=self._headers(), timeout=timeout
                )
            except httpx.TransportError as exc:
                if attempt < retries:
                    logger.debug("Retrying %s %s after %s", method, path, exc.__class__.__name__)
                    await self._sleep(RETRY_BACKOFF_SECONDS * (attempt + 1))
                    continue
                if isinstance(exc, httpx.TimeoutException):
                    raise ApiError(TIMEOUT_MESSAGE, 408) from exc
                raise ApiError(NETWORK_MESSAGE, 503) from exc
            return self._decode(response)

        raise ApiError("网络请求失败", 500)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:  # noqa: ANN401
        payload: Any = None
        if response.content:
            try:
                payload = response.json()
            except ValueError:
                payload = {"raw": response.text}
        if response.is_error:
            raise ApiError(_error_message(payload, response.status_code), response.status_code, payload)
        return payload

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:  # noqa: ANN401
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> Any:  # noqa: ANN401
        return await self.request("POST", path, json=body)

    async def patch(self, path: str, body: Any) -> Any:  # noqa: ANN401
        return await self.request("PATCH", path, json=body)

    async def delete(self, path: str) -> Any:  # noqa: ANN401
        return await self.request("DELETE", path)
