"""Retry policy for work items.

Pure functions over attempt counts; no I/O. Rate-limit hints always win
over computed backoff.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a cap and an attempt bound."""

    base_delay_s: float = 5.0
    max_delay_s: float = 300.0
    max_attempts: int = 5

    def next_delay(self, attempts: int, hint: Optional[float] = None) -> float:
        """Seconds to wait before the next attempt.

        Formula: min(max_delay_s, base_delay_s * 2^attempts), where attempts
        is the count already made (claim increments it before execution).
        """
        if hint is not None:
            return max(0.0, float(hint))
        exponent = max(0, attempts)
        # Avoid building huge ints for large attempt counts
        if exponent >= 64:
            return self.max_delay_s
        return min(self.max_delay_s, self.base_delay_s * (2**exponent))

    def is_terminal(self, attempts: int) -> bool:
        """True once the attempt bound is exhausted."""
        return attempts >= self.max_attempts

    def with_max_attempts(self, max_attempts: int) -> "RetryPolicy":
        return RetryPolicy(self.base_delay_s, self.max_delay_s, max_attempts)


# General queue (webhook-driven work)
DEFAULT_POLICY = RetryPolicy(base_delay_s=5.0, max_delay_s=300.0, max_attempts=5)

# Removal queue backs off harder; the external calendar API is the bottleneck
REMOVAL_POLICY = RetryPolicy(base_delay_s=10.0, max_delay_s=300.0, max_attempts=5)
