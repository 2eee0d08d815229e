"""
iGPT API client.

IGPT assembles requests for the service catalogue, runs them through the
retrying executor, and turns the outcome into a decoded JSON value, a
StreamParser for streaming calls, or a NormalizedError.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
from loguru import logger

from . import __version__
from .config import settings
from .runtime.errors import NormalizedError
from .runtime.http_client import RetryingHttpClient
from .runtime.request import CancellationToken, RequestDescriptor
from .runtime.retry import RetryPolicy
from .runtime.stream import StreamParser
from .services import SERVICES, ConnectorsService, DatasourcesService, RecallService, Result

CLIENT_NAME = "igpt-sdk"

# Non-retryable statuses the API uses for rejected calls
AUTH_STATUSES = frozenset({401, 403})
PARAMS_STATUSES = frozenset({400, 422})


class IGPT:
    """Async client for the iGPT API.

    Example:
        async with IGPT(api_key="...", user="user-1") as client:
            answer = await client.recall.ask(input="What changed this week?")
            if is_error(answer):
                ...
    """

    recall: RecallService
    datasources: DatasourcesService
    connectors: ConnectorsService

    def __init__(
        self,
        api_key: str | None = None,
        user: str | None = None,
        base_url: str | None = None,
        retries: int | None = None,
        backoff_base: float | None = None,
        backoff_factor: float | None = None,
        timeout_ms: float | None = None,
        stream_timeout_ms: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Any argument left as None falls back to the matching IGPT_* setting.

        Args:
            api_key: API key sent as a bearer token.
            user: Default user ID, filled into calls that don't set one.
            base_url: API base URL.
            retries: Number of retry attempts on transient failure.
            backoff_base: Initial retry delay in milliseconds.
            backoff_factor: Exponential backoff factor.
            timeout_ms: Per-attempt budget for regular calls.
            stream_timeout_ms: Per-attempt budget for opening a stream.
            transport: Optional httpx transport, mainly for tests.

        Raises:
            ValueError: If no API key is configured.
        """
        self._api_key = api_key if api_key is not None else settings.IGPT_API_KEY
        if not self._api_key:
            raise ValueError("An API key is required (pass api_key or set IGPT_API_KEY)")

        self._user = user if user is not None else settings.IGPT_USER
        self._base_url = base_url or settings.IGPT_BASE_URL
        self._timeout_ms = timeout_ms if timeout_ms is not None else settings.IGPT_TIMEOUT_MS
        self._stream_timeout_ms = (
            stream_timeout_ms if stream_timeout_ms is not None else settings.IGPT_STREAM_TIMEOUT_MS
        )

        self._http = RetryingHttpClient(
            retry_policy=RetryPolicy(
                max_retries=retries if retries is not None else settings.IGPT_RETRIES,
                backoff_base=backoff_base if backoff_base is not None else settings.IGPT_BACKOFF_BASE_MS,
                backoff_factor=(
                    backoff_factor if backoff_factor is not None else settings.IGPT_BACKOFF_FACTOR
                ),
                timeout_ms=self._timeout_ms,
            ),
            transport=transport,
        )

        for name, service_cls in SERVICES.items():
            setattr(self, name, service_cls(self))

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._http.retry_policy

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        await self._http.close()

    async def __aenter__(self) -> "IGPT":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager."""
        await self.close()

    async def invoke(
        self,
        path: str,
        params: dict[str, Any],
        cancel: CancellationToken | None = None,
    ) -> Result:
        """Post params to a path, as a regular or a streaming call.

        Args:
            path: Path relative to the base URL.
            params: Body fields. Copied, never mutated.
            cancel: Optional caller cancellation token.

        Returns:
            Decoded JSON, a StreamParser when params has stream=True, or a
            NormalizedError.
        """
        body = dict(params)
        if self._user and not body.get("user"):
            body["user"] = self._user

        if body.get("stream") is True:
            return await self._open_stream(path, body, cancel)
        return await self._post_json(path, body, cancel)

    async def _post_json(
        self, path: str, body: Any, cancel: CancellationToken | None
    ) -> Any | NormalizedError:
        res = await self._execute(path, body=body, cancel=cancel)
        if isinstance(res, NormalizedError):
            return res

        rejected = self._rejection(res)
        if rejected is not None:
            return rejected

        try:
            return res.json()
        except (ValueError, RecursionError) as e:
            logger.warning(f"Invalid JSON from {path} (status={res.status_code}): {e}")
            return NormalizedError.invalid_json_response(str(e))

    async def _open_stream(
        self, path: str, body: Any, cancel: CancellationToken | None
    ) -> StreamParser | NormalizedError:
        res = await self._execute(path, body=body, cancel=cancel, stream=True)
        if isinstance(res, NormalizedError):
            return res

        rejected = self._rejection(res)
        if rejected is not None:
            await res.aclose()
            return rejected

        return StreamParser(res)

    @staticmethod
    def _rejection(response: httpx.Response) -> NormalizedError | None:
        """Map the API's rejection statuses to error kinds."""
        if response.status_code in AUTH_STATUSES:
            return NormalizedError.auth(f"status={response.status_code}")
        if response.status_code in PARAMS_STATUSES:
            return NormalizedError.params(f"status={response.status_code}")
        return None

    def _build_url(self, path: str) -> str:
        """Build full URL from path.

        Args:
            path: Request path (with or without leading slash).

        Returns:
            Full URL including base_url.
        """
        return f"{self._base_url.rstrip('/')}/{path.lstrip('/')}"

    def _build_request(
        self,
        path: str,
        body: Any = None,
        method: str | None = None,
        headers: dict[str, str] | None = None,
        stream: bool = False,
    ) -> RequestDescriptor:
        """Assemble URL, headers and serialized body.

        Dict bodies are sent as JSON; anything else is passed through as-is.
        Caller headers override the defaults.
        """
        structured = isinstance(body, dict)

        request_headers = {"Authorization": f"Bearer {self._api_key}"}
        if structured:
            request_headers["Content-Type"] = "application/json"
        request_headers["X-Client"] = f"{CLIENT_NAME}/{__version__}"
        request_headers.update(headers or {})

        return RequestDescriptor(
            url=self._build_url(path),
            method=method or "POST",
            headers=request_headers,
            content=json.dumps(body) if structured else body,
            stream=stream,
        )

    async def _execute(
        self,
        path: str,
        body: Any = None,
        method: str | None = None,
        headers: dict[str, str] | None = None,
        cancel: CancellationToken | None = None,
        stream: bool = False,
    ) -> httpx.Response | NormalizedError:
        request = self._build_request(path, body=body, method=method, headers=headers, stream=stream)
        timeout_ms = self._stream_timeout_ms if stream else self._timeout_ms
        return await self._http.execute(request, timeout_ms=timeout_ms, cancel=cancel)
