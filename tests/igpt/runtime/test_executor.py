"""Unit tests for RetryingHttpClient."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pydantic import ValidationError
from loguru import logger

from igpt.runtime.errors import ErrorKind, NormalizedError
from igpt.runtime.http_client import RetryingHttpClient
from igpt.runtime.request import CancellationToken, RequestDescriptor
from igpt.runtime.retry import DEFAULT_RETRY_POLICY, RetryPolicy


class ScriptedHandler:
    """MockTransport handler replaying one scripted outcome per call.

    Each step is a status code, an exception to raise, or a coroutine
    function awaited in place of the network.
    """

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps[min(len(self.requests), len(self.steps)) - 1]
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return await step(request)
        return httpx.Response(step, json={"status": step})

    @property
    def calls(self) -> int:
        return len(self.requests)


async def hang(request: httpx.Request) -> httpx.Response:
    await asyncio.sleep(10)
    return httpx.Response(200)


def make_executor(handler, **policy) -> RetryingHttpClient:
    defaults = {"max_retries": 3, "backoff_base": 1.0, "backoff_factor": 2.0, "timeout_ms": 5_000}
    defaults.update(policy)
    return RetryingHttpClient(
        retry_policy=RetryPolicy(**defaults),
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def request_descriptor():
    return RequestDescriptor(
        url="https://api.test/v1/recall/ask",
        headers={"Content-Type": "application/json"},
        content='{"input": "hi"}',
        request_id="req-123",
    )


@pytest.fixture
def log_messages():
    messages = []
    handler_id = logger.add(messages.append, level="INFO", format="{message}")
    yield messages
    logger.remove(handler_id)


class TestRetryableStatus:
    """Tests for retry on 5xx and 429."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_retries", [0, 1, 3])
    async def test_attempts_max_retries_plus_one(self, request_descriptor, max_retries):
        """A request that always gets 503 is attempted exactly n+1 times."""
        handler = ScriptedHandler(503)
        executor = make_executor(handler, max_retries=max_retries)

        with patch.object(executor, "_backoff", AsyncMock(return_value=False)):
            result = await executor.execute(request_descriptor)

        assert handler.calls == max_retries + 1
        assert isinstance(result, httpx.Response)
        assert result.status_code == 503

    @pytest.mark.asyncio
    async def test_backoff_grows_exponentially(self, request_descriptor):
        """Delay before attempt k is backoff_base * backoff_factor ** (k - 1)."""
        handler = ScriptedHandler(500)
        executor = make_executor(handler, max_retries=3, backoff_base=100.0, backoff_factor=2.0)
        backoff = AsyncMock(return_value=False)

        with patch.object(executor, "_backoff", backoff):
            await executor.execute(request_descriptor)

        delays = [call.args[0] for call in backoff.call_args_list]
        assert delays == pytest.approx([0.1, 0.2, 0.4])

    @pytest.mark.asyncio
    async def test_retries_429_then_succeeds(self, request_descriptor):
        """Should retry on 429 and return the first non-retryable response."""
        handler = ScriptedHandler(429, 200)
        executor = make_executor(handler)

        result = await executor.execute(request_descriptor)

        assert result.status_code == 200
        assert handler.calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [200, 400, 401, 404, 422])
    async def test_non_retryable_status_returned_immediately(self, request_descriptor, status):
        """Non-retryable statuses come back on attempt 0 regardless of max_retries."""
        handler = ScriptedHandler(status)
        executor = make_executor(handler, max_retries=5)

        result = await executor.execute(request_descriptor)

        assert result.status_code == status
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_logs_each_retry(self, request_descriptor, log_messages):
        """Should log retries with the request_id prefix."""
        handler = ScriptedHandler(502, 200)
        executor = make_executor(handler)

        await executor.execute(request_descriptor)

        assert any("[req-123]" in m and "retry 1/3" in m and "status=502" in m for m in log_messages)


class TestTransportFailures:
    """Tests for connection-level failures."""

    @pytest.mark.asyncio
    async def test_retries_on_connect_error(self, request_descriptor):
        """Should retry a transport failure and return the later response."""
        handler = ScriptedHandler(httpx.ConnectError("connection refused"), 200)
        executor = make_executor(handler)

        result = await executor.execute(request_descriptor)

        assert result.status_code == 200
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_network_error_after_retries_exhausted(self, request_descriptor):
        """Should return network_error once every attempt has failed."""
        handler = ScriptedHandler(httpx.ReadError("connection reset"))
        executor = make_executor(handler, max_retries=2)

        result = await executor.execute(request_descriptor)

        assert isinstance(result, NormalizedError)
        assert result.kind == ErrorKind.NETWORK_ERROR
        assert handler.calls == 3

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_normalized(self, request_descriptor):
        """Should never let a raw exception escape."""
        handler = ScriptedHandler(RuntimeError("boom"))
        executor = make_executor(handler, max_retries=0)

        result = await executor.execute(request_descriptor)

        assert result.kind == ErrorKind.NETWORK_ERROR


class TestDeadline:
    """Tests for the per-attempt deadline."""

    @pytest.mark.asyncio
    async def test_timeout_on_final_attempt(self, request_descriptor):
        """Deadline expiry on the last attempt yields timeout."""
        handler = ScriptedHandler(hang)
        executor = make_executor(handler, max_retries=1, timeout_ms=20)

        result = await executor.execute(request_descriptor)

        assert result.kind == ErrorKind.TIMEOUT
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_timeout_on_earlier_attempt_retries(self, request_descriptor):
        """Deadline expiry with attempts left triggers a retry."""
        handler = ScriptedHandler(hang, 200)
        executor = make_executor(handler, max_retries=2, timeout_ms=20)

        result = await executor.execute(request_descriptor)

        assert result.status_code == 200
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_override_replaces_policy_timeout(self, request_descriptor):
        """A per-request timeout overrides the policy's timeout_ms."""
        handler = ScriptedHandler(hang)
        executor = make_executor(handler, max_retries=0, timeout_ms=60_000)

        result = await asyncio.wait_for(
            executor.execute(request_descriptor, timeout_ms=20), timeout=2
        )

        assert result.kind == ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_no_tasks_left_behind(self, request_descriptor):
        """Attempt deadlines and abandoned sends are cleaned up on every path."""
        before = asyncio.all_tasks()
        handler = ScriptedHandler(hang, httpx.ConnectError("refused"), 503)
        executor = make_executor(handler, max_retries=2, timeout_ms=20)
        token = CancellationToken()

        await executor.execute(request_descriptor, cancel=token)

        assert asyncio.all_tasks() <= before


class TestCancellation:
    """Tests for caller-initiated cancellation."""

    @pytest.mark.asyncio
    async def test_abort_during_attempt_is_not_retried(self, request_descriptor):
        """Caller cancellation yields request_aborted even with retries left."""
        handler = ScriptedHandler(hang)
        executor = make_executor(handler, max_retries=3)
        token = CancellationToken()

        task = asyncio.create_task(executor.execute(request_descriptor, cancel=token))
        await asyncio.sleep(0.05)
        token.cancel()
        result = await task

        assert result.kind == ErrorKind.REQUEST_ABORTED
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_abort_during_backoff(self, request_descriptor):
        """Cancelling while waiting to retry stops the call."""
        handler = ScriptedHandler(503)
        executor = make_executor(handler, max_retries=3, backoff_base=10_000.0)
        token = CancellationToken()

        task = asyncio.create_task(executor.execute(request_descriptor, cancel=token))
        await asyncio.sleep(0.05)
        token.cancel()
        result = await asyncio.wait_for(task, timeout=2)

        assert result.kind == ErrorKind.REQUEST_ABORTED
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_already_cancelled_token_sends_nothing(self, request_descriptor):
        """A token cancelled up front short-circuits the call."""
        handler = ScriptedHandler(200)
        executor = make_executor(handler)
        token = CancellationToken()
        token.cancel()

        result = await executor.execute(request_descriptor, cancel=token)

        assert result.kind == ErrorKind.REQUEST_ABORTED
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_cancelling_one_call_leaves_others_running(self, request_descriptor):
        """Each call has its own cancellation scope."""

        async def slow_ok(request):
            await asyncio.sleep(0.1)
            return httpx.Response(200)

        handler = ScriptedHandler(slow_ok)
        executor = make_executor(handler)
        first, second = CancellationToken(), CancellationToken()

        task_a = asyncio.create_task(executor.execute(request_descriptor, cancel=first))
        task_b = asyncio.create_task(executor.execute(request_descriptor, cancel=second))
        await asyncio.sleep(0.02)
        first.cancel()

        result_a, result_b = await asyncio.gather(task_a, task_b)

        assert result_a.kind == ErrorKind.REQUEST_ABORTED
        assert result_b.status_code == 200


class TestRequestHandling:
    """Tests for how the descriptor is sent."""

    @pytest.mark.asyncio
    async def test_sends_descriptor_fields(self, request_descriptor):
        """Should send method, URL, headers and body as described."""
        handler = ScriptedHandler(200)
        executor = make_executor(handler)

        await executor.execute(request_descriptor)

        sent = handler.requests[0]
        assert sent.method == "POST"
        assert str(sent.url) == "https://api.test/v1/recall/ask"
        assert sent.headers["Content-Type"] == "application/json"
        assert sent.content == b'{"input": "hi"}'

    @pytest.mark.asyncio
    async def test_stream_request_leaves_body_unread(self, request_descriptor):
        """Streaming requests return before the body is consumed."""
        handler = ScriptedHandler(200)
        executor = make_executor(handler)
        streaming = request_descriptor.model_copy(update={"stream": True})

        response = await executor.execute(streaming)

        assert not response.is_stream_consumed
        await response.aclose()


class TestDefaults:
    """Tests for construction defaults."""

    def test_uses_default_policy(self):
        assert RetryingHttpClient().retry_policy is DEFAULT_RETRY_POLICY

    def test_descriptor_is_immutable(self, request_descriptor):
        with pytest.raises(ValidationError):
            request_descriptor.url = "https://elsewhere.test"


class TestContextManager:
    """Tests for async context manager usage."""

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        """Should open the client on enter and close it on exit."""
        async with RetryingHttpClient() as executor:
            assert executor._client is not None

        assert executor._client is None
