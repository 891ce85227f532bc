"""Retry helpers driven by an explicit policy."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar


T = TypeVar("T")

DelayFunction = Callable[[int], float]


def fixed_delay(seconds: float) -> DelayFunction:
    """Return a delay function that always waits ``seconds``."""

    return lambda attempt: seconds


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait between attempts.

    ``delay`` receives the 1-indexed attempt that just failed.
    """

    attempts: int = 3
    delay: DelayFunction = fixed_delay(0.0)

    def wait_after(self, attempt: int) -> float:
        return max(0.0, float(self.delay(attempt)))


def retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    on_error: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """Execute ``fn`` until it succeeds or ``policy.attempts`` is exhausted.

    The last exception is re-raised once no attempts remain.
    """

    attempts = max(1, policy.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if on_error is not None:
                on_error(attempt, exc)
            if attempt == attempts:
                raise
            sleep(policy.wait_after(attempt))
    raise RuntimeError("unreachable")  # pragma: no cover


__all__ = ["DelayFunction", "RetryPolicy", "fixed_delay", "retry"]
