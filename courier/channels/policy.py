"""
Retry Policy - Attempt timeout and fixed backoff schedule.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_RETRY_BACKOFF_MS = (200, 500, 1000)
DEFAULT_HTTP_TIMEOUT_MS = 15_000


@dataclass
class RetryPolicy:
    """
    Fixed backoff schedule.

    max_attempts is always len(backoff_ms) + 1: the first try plus one retry per delay.
    """
    timeout_ms: int = DEFAULT_HTTP_TIMEOUT_MS
    backoff_ms: list[int] = field(default_factory=lambda: list(DEFAULT_RETRY_BACKOFF_MS))

    @property
    def max_attempts(self) -> int:
        return len(self.backoff_ms) + 1

    def backoff_before_attempt(self, attempt_index: int) -> Optional[int]:
        """Delay in ms before the zero-based attempt, None for the first or past the schedule"""
        if attempt_index <= 0 or attempt_index > len(self.backoff_ms):
            return None
        return self.backoff_ms[attempt_index - 1]


def should_retry_http_status(status: int) -> bool:
    return status == 429 or 500 <= status < 600
