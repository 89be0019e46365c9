from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

from ..errors import DispatchError


def default_retry_classifier(exc: BaseException) -> bool:
    """Every failure is retryable unless a DispatchError says otherwise."""
    if isinstance(exc, DispatchError):
        return exc.retryable
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries for scheduler-driven dispatch.

    An output is attempted at most ``max_retries + 1`` times. Backoff is off by
    default (``initial_backoff_ms=0``), so a failed output is retried on the
    very next scheduler tick.
    """

    max_retries: int = 3
    initial_backoff_ms: int = 0
    max_backoff_ms: int = 0
    backoff_multiplier: float = 2.0
    jitter: bool = False
    classify_retryable: Callable[[BaseException], bool] = field(
        default=default_retry_classifier, compare=False
    )

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def exhausted(self, retry_count: int) -> bool:
        return retry_count > self.max_retries

    def next_backoff_ms(self, retry_count: int) -> int:
        """Delay before the attempt following failure number ``retry_count`` (1-based)."""
        if self.initial_backoff_ms <= 0:
            return 0
        delay = self.initial_backoff_ms * (self.backoff_multiplier ** max(0, retry_count - 1))
        if self.max_backoff_ms > 0:
            delay = min(delay, self.max_backoff_ms)
        if self.jitter:
            delay = random.uniform(delay * 0.5, delay)
        return int(delay)
