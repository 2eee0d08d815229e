"""
Normalized error values shared by the executor, the stream decoder and the client.

Failures never cross the public boundary as exceptions. They are returned
(or yielded, for streams) as NormalizedError values so callers can branch on
a result instead of wrapping every call in try/except.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel


class ErrorKind(str, Enum):
    """The closed set of failure kinds exposed to callers."""

    # Transport
    NETWORK_ERROR = "network_error"
    REQUEST_ABORTED = "request_aborted"
    TIMEOUT = "timeout"

    # Remote rejections
    AUTH = "auth"
    PARAMS = "params"

    # Body decoding
    INVALID_JSON_RESPONSE = "invalid_json_response"


class NormalizedError(BaseModel):
    """A failure, as a plain immutable value.

    Attributes:
        kind: Which of the ErrorKind categories this failure falls in.
        message: Optional detail for logs. Not part of the wire shape.
    """

    kind: ErrorKind
    message: str | None = None

    model_config = {"frozen": True}

    @property
    def error(self) -> str:
        """The kind as its wire string."""
        return self.kind.value

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape ``{"error": <kind>}``."""
        return {"error": self.kind.value}

    def __str__(self) -> str:
        if self.message:
            return f"[{self.kind.value}] {self.message}"
        return f"[{self.kind.value}]"

    @classmethod
    def network_error(cls, message: str | None = None) -> "NormalizedError":
        return cls(kind=ErrorKind.NETWORK_ERROR, message=message)

    @classmethod
    def request_aborted(cls, message: str | None = None) -> "NormalizedError":
        return cls(kind=ErrorKind.REQUEST_ABORTED, message=message)

    @classmethod
    def timeout(cls, message: str | None = None) -> "NormalizedError":
        return cls(kind=ErrorKind.TIMEOUT, message=message)

    @classmethod
    def auth(cls, message: str | None = None) -> "NormalizedError":
        return cls(kind=ErrorKind.AUTH, message=message)

    @classmethod
    def params(cls, message: str | None = None) -> "NormalizedError":
        return cls(kind=ErrorKind.PARAMS, message=message)

    @classmethod
    def invalid_json_response(cls, message: str | None = None) -> "NormalizedError":
        return cls(kind=ErrorKind.INVALID_JSON_RESPONSE, message=message)


def is_error(value: Any) -> bool:
    """Check whether a result returned by the client is a NormalizedError.

    Args:
        value: Anything returned or yielded by the client.

    Returns:
        True if the value is a NormalizedError.
    """
    return isinstance(value, NormalizedError)
