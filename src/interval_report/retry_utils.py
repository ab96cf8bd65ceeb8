from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Bounded retry for transient transport failures.

    Notes:
    - Backoff is deterministic (no jitter) so reruns behave the same.
    - The last error is re-raised once max_attempts is reached; there is no
      retry-forever mode.
    """

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 15.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay_s, self.base_delay_s * (self.multiplier ** (attempt - 1)))


def retry_call(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig,
    should_retry: Callable[[Exception], bool],
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
) -> T:
    """Call `fn` with retry + exponential backoff.

    Parameters:
      - fn: callable to execute
      - cfg: retry configuration
      - should_retry: predicate for retryable exceptions
      - on_retry: optional callback (attempt_index, exc, delay_s)

    attempt_index is 1-based and refers to the attempt that *failed*.
    """

    if cfg.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            if attempt >= cfg.max_attempts or not should_retry(exc):
                raise

            delay_s = cfg.delay_for(attempt)
            if on_retry is not None:
                on_retry(attempt, exc, delay_s)
            time.sleep(delay_s)
