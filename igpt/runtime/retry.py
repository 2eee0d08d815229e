"""
Retry policy configuration.

This module provides the exponential backoff schedule and the retryable
status classification used by the request executor.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    Created once per client and shared read-only by every request it issues.
    The wait that follows failed attempt N (0-indexed) is
    ``backoff_base * backoff_factor ** N`` milliseconds, so the delay before
    attempt k (k >= 1) is ``backoff_base * backoff_factor ** (k - 1)``.

    Attributes:
        max_retries: Number of extra attempts beyond the first.
        backoff_base: Initial delay in milliseconds between attempts.
        backoff_factor: Multiplier applied to the delay after each attempt.
        timeout_ms: Wall-clock budget for a single attempt, in milliseconds.
    """

    max_retries: int = Field(default=3, ge=0)
    backoff_base: float = Field(default=100.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    timeout_ms: float = Field(default=60_000.0, gt=0)

    model_config = {"frozen": True}

    @property
    def max_attempts(self) -> int:
        """Total number of attempts, including the initial one."""
        return self.max_retries + 1

    def delay_ms(self, attempt: int) -> float:
        """Calculate the wait in milliseconds that follows a failed attempt.

        Args:
            attempt: The attempt number that just failed (0-indexed).

        Returns:
            Delay in milliseconds before the next attempt.
        """
        return self.backoff_base * (self.backoff_factor**attempt)

    def calculate_delay(self, attempt: int) -> float:
        """Same as delay_ms, in seconds."""
        return self.delay_ms(attempt) / 1000.0

    def should_retry_status(self, status_code: int) -> bool:
        """Check if a status code should trigger a retry.

        Args:
            status_code: HTTP status code to check.

        Returns:
            True for any 5xx and for 429.
        """
        return 500 <= status_code < 600 or status_code == 429

    def is_last_attempt(self, attempt: int) -> bool:
        return attempt >= self.max_retries


# Default policy for general use
DEFAULT_RETRY_POLICY = RetryPolicy()
