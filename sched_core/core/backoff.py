import random
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from sched_core.core.config import Settings
from sched_core.core.errors import classify_error, describe_error, PERMANENT, TransientError


class RetryPolicy:
    """
    Exponential backoff with jitter

    delay = min(base * 2^attempts, cap) + uniform(0, delay * jitter_ratio)
    """

    def __init__(
            self,
            max_attempts: int,
            base_seconds: float = 60.0,
            cap_seconds: float = 3600.0,
            jitter_ratio: float = 0.25,
            rng: Optional[Callable[[], float]] = None,
    ):
        self.max_attempts = max_attempts
        self.base_seconds = base_seconds
        self.cap_seconds = cap_seconds
        self.jitter_ratio = jitter_ratio
        self.rng = rng or random.random

    @classmethod
    def from_settings(cls, settings: Settings, max_attempts: int, rng=None) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts,
            base_seconds=settings.BACKOFF_BASE_SECONDS,
            cap_seconds=settings.BACKOFF_CAP_SECONDS,
            jitter_ratio=settings.BACKOFF_JITTER_RATIO,
            rng=rng,
        )

    def delay_seconds(self, attempts: int) -> float:
        exponent = max(attempts, 0)
        # Avoid float overflow on very large attempt counts
        delay = self.cap_seconds if exponent > 30 else min(self.base_seconds * (2 ** exponent), self.cap_seconds)
        return delay + delay * self.jitter_ratio * self.rng()

    def next_run_after(self, now: datetime, attempts: int, retry_after: Optional[float] = None) -> datetime:
        delay = self.delay_seconds(attempts)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return now + timedelta(seconds=delay)

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts


def retry_bookkeeping(item, exc: BaseException, now: datetime, policy: RetryPolicy) -> Tuple[Dict[str, Any], bool, str]:
    """
    Column values for an item whose processing raised exc.

    Permanent errors and exhausted attempts are terminal; otherwise the item
    gets a new run_after of base * 2^(attempts before this failure) plus jitter.

    Returns:
        (values, terminal, error class)
    """
    kind = classify_error(exc)
    attempts = (item.attempts or 0) + 1
    terminal = kind == PERMANENT or policy.is_exhausted(attempts)

    values = {
        "attempts": attempts,
        "last_error": describe_error(exc),
    }
    if not terminal:
        retry_after = exc.retry_after if isinstance(exc, TransientError) else None
        values["run_after"] = policy.next_run_after(now, attempts - 1, retry_after)
    return values, terminal, kind
