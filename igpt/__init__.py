"""
Python client for the iGPT API.
"""

__version__ = "0.1.0"

from .client import IGPT
from .runtime import (
    CancellationToken,
    ErrorKind,
    NormalizedError,
    RetryPolicy,
    StreamParser,
    is_error,
)

__all__ = [
    "IGPT",
    "CancellationToken",
    "ErrorKind",
    "NormalizedError",
    "RetryPolicy",
    "StreamParser",
    "is_error",
    "__version__",
]
