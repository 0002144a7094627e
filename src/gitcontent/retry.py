from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .errors import FastForwardRejectedError, RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_fast_forward_rejection(error: BaseException) -> bool:
    return isinstance(error, FastForwardRejectedError)


def is_rate_limited(error: BaseException) -> bool:
    return isinstance(error, RateLimitedError)


@dataclass(slots=True)
class RetryPolicy:
    """Re-run an operation from scratch when it fails with a retryable error.

    The operation is invoked once plus up to ``max_retries`` more times. Before
    retry ``n`` (0-based) it sleeps ``base * 2**n`` plus uniform jitter of up to
    the same amount, unless the error carries a host-provided ``retry_after``.
    """

    max_retries: int = 5
    base_delay_seconds: float = 0.2
    retry_on: Callable[[BaseException], bool] = is_fast_forward_rejection
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rand: Callable[[], float] = field(default=random.random, repr=False)
    label: str = "operation"

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")

    def run(self, operation: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return operation()
            except Exception as exc:
                if not self.retry_on(exc) or attempt >= self.max_retries:
                    raise

                delay = self.delay_for(attempt, exc)
                logger.warning(
                    "%s failed with retryable error, retry=%d/%d delay_seconds=%.3f error=%s",
                    self.label,
                    attempt + 1,
                    self.max_retries,
                    delay,
                    exc,
                )
                self.sleep(delay)
                attempt += 1

    def delay_for(self, attempt: int, error: BaseException | None = None) -> float:
        hint = getattr(error, "retry_after", None)
        if isinstance(hint, (int, float)) and hint >= 0:
            return float(hint)

        delay = self.base_delay_seconds * (2**attempt)
        jitter = self.rand() * delay
        return delay + jitter
