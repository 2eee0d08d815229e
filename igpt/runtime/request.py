"""
Request-scoped values for the executor.

RequestDescriptor is the immutable description of one logical request.
CancellationToken is the caller's own cancellation signal for one call,
kept separate from the deadline the executor enforces on each attempt.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

import httpx
from pydantic import BaseModel, Field


class RequestDescriptor(BaseModel):
    """Everything the executor needs to send one logical request.

    The executor reads it once per attempt and never mutates it.

    Attributes:
        url: Absolute target URL.
        method: HTTP method.
        headers: Outbound headers.
        content: Already-serialized body, or any body httpx accepts as content.
        stream: Whether the response body should be left unread for streaming.
        request_id: Correlation ID used to prefix log lines.
    """

    url: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    content: Any = None
    stream: bool = False
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])

    model_config = {"frozen": True}

    def build(self, client: httpx.AsyncClient) -> httpx.Request:
        """Build a fresh httpx.Request for one attempt.

        Args:
            client: The client whose defaults the request inherits.

        Returns:
            A new request; each attempt gets its own.
        """
        return client.build_request(
            method=self.method,
            url=self.url,
            headers=self.headers,
            content=self.content,
        )


class CancellationToken:
    """Caller-owned cancellation signal for a single call.

    Example:
        token = CancellationToken()
        task = asyncio.create_task(client.recall.ask(input="hi", cancel=token))
        token.cancel()
        assert (await task).kind == ErrorKind.REQUEST_ABORTED
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation. Safe to call more than once."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Suspend until cancel() is called."""
        await self._event.wait()
