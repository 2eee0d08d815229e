"""
Retrying request executor.

This module sends a single logical request with per-attempt deadlines,
exponential backoff between attempts, and caller cancellation. Every
outcome is either an httpx.Response or a NormalizedError; nothing raises.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from .errors import NormalizedError
from .request import CancellationToken, RequestDescriptor
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy


class _DeadlineExceeded(Exception):
    """The executor's own per-attempt deadline fired."""


class _CallerAborted(Exception):
    """The caller's CancellationToken fired during an attempt."""


class RetryingHttpClient:
    """Async HTTP executor with retry, timeout and cancellation semantics.

    Features:
    - Connection reuse via a lazily created httpx.AsyncClient
    - Retry on 5xx, 429, transport failures and per-attempt timeouts
    - Caller cancellation that is never retried
    - Cancellable backoff between attempts

    Status codes are not interpreted beyond the retry decision; a 404 or a
    final 503 is returned as a response for the caller to inspect.

    Example:
        executor = RetryingHttpClient(RetryPolicy(max_retries=2))
        async with executor:
            result = await executor.execute(RequestDescriptor(url="https://api/x"))
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the executor.

        Args:
            retry_policy: Retry configuration. Uses default if None.
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
        """
        self.retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client.

        Attempt deadlines are enforced by the executor, so the client itself
        carries no timeout.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=None, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RetryingHttpClient":
        """Enter async context manager."""
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context manager."""
        await self.close()

    async def execute(
        self,
        request: RequestDescriptor,
        timeout_ms: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> httpx.Response | NormalizedError:
        """Send a request, retrying transient failures.

        Args:
            request: What to send. Never mutated.
            timeout_ms: Per-attempt budget overriding the policy's timeout_ms.
            cancel: Optional caller cancellation token for this call.

        Returns:
            The response of the last attempt made, or a NormalizedError of kind
            request_aborted, timeout or network_error.
        """
        policy = self.retry_policy
        budget_ms = timeout_ms if timeout_ms is not None else policy.timeout_ms
        tag = f"[{request.request_id}] {request.method} {request.url}"

        if cancel is not None and cancel.cancelled:
            logger.info(f"{tag} aborted before the first attempt")
            return NormalizedError.request_aborted()

        client = await self._get_client()

        for attempt in range(policy.max_attempts):
            last = policy.is_last_attempt(attempt)

            try:
                response = await self._attempt(client, request, budget_ms / 1000.0, cancel)

            except _CallerAborted:
                logger.info(f"{tag} aborted by caller on attempt {attempt + 1}")
                return NormalizedError.request_aborted()

            except _DeadlineExceeded:
                if last:
                    logger.warning(
                        f"{tag} timed out after {budget_ms:.0f}ms, "
                        f"{policy.max_attempts} attempt(s) exhausted"
                    )
                    return NormalizedError.timeout(f"attempt exceeded {budget_ms:.0f}ms")
                reason = f"timeout after {budget_ms:.0f}ms"

            except Exception as e:
                if last:
                    logger.warning(
                        f"{tag} failed: {type(e).__name__}: {e}, "
                        f"{policy.max_attempts} attempt(s) exhausted"
                    )
                    return NormalizedError.network_error(f"{type(e).__name__}: {e}")
                reason = f"{type(e).__name__}: {e}"

            else:
                if last or not policy.should_retry_status(response.status_code):
                    return response
                await response.aclose()
                reason = f"status={response.status_code}"

            delay = policy.calculate_delay(attempt)
            logger.info(
                f"{tag} retry {attempt + 1}/{policy.max_retries} ({reason}) in {delay:.2f}s"
            )
            if await self._backoff(delay, cancel):
                logger.info(f"{tag} aborted by caller during backoff")
                return NormalizedError.request_aborted()

        # Should not reach here
        raise RuntimeError("Retry loop exited unexpectedly")

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        request: RequestDescriptor,
        timeout_s: float,
        cancel: CancellationToken | None,
    ) -> httpx.Response:
        """Run one attempt, racing the transport against the deadline and the caller.

        Exactly one outcome is observed. Whatever lost the race is cancelled
        and awaited before returning, so no timer or send outlives the attempt.

        Raises:
            _DeadlineExceeded: The deadline fired first.
            _CallerAborted: The caller's token fired first.
            Exception: Whatever the transport raised.
        """
        send = asyncio.ensure_future(client.send(request.build(client), stream=request.stream))
        waiters: set[asyncio.Future[Any]] = {send}
        aborted: asyncio.Future[Any] | None = None
        if cancel is not None:
            aborted = asyncio.ensure_future(cancel.wait())
            waiters.add(aborted)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [w for w in waiters if not w.done()]
            for waiter in pending:
                waiter.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if send in done:
            return send.result()
        if aborted is not None and aborted in done:
            raise _CallerAborted()
        raise _DeadlineExceeded()

    @staticmethod
    async def _backoff(delay: float, cancel: CancellationToken | None) -> bool:
        """Wait before the next attempt.

        Returns:
            True if the caller cancelled during the wait.
        """
        if cancel is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
