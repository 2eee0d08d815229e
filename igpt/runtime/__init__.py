"""
Request runtime for the iGPT client.

This package provides the pieces every call goes through:
- RetryingHttpClient: retry, per-attempt deadline and caller cancellation
- RetryPolicy: exponential backoff configuration
- RequestDescriptor / CancellationToken: per-call request and abort signal
- StreamParser: incremental decoder for ``data: <json>`` streams
- NormalizedError: the no-throw failure value
"""

from .errors import ErrorKind, NormalizedError, is_error
from .http_client import RetryingHttpClient
from .request import CancellationToken, RequestDescriptor
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy
from .stream import StreamFrameBuffer, StreamParser, parse_frame

__all__ = [
    "ErrorKind",
    "NormalizedError",
    "is_error",
    "RetryingHttpClient",
    "CancellationToken",
    "RequestDescriptor",
    "DEFAULT_RETRY_POLICY",
    "RetryPolicy",
    "StreamFrameBuffer",
    "StreamParser",
    "parse_frame",
]
