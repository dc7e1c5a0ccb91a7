"""
Retry Policy
Exponential backoff with jitter for retryable stage failures.
"""

import random
from dataclasses import dataclass
from typing import Dict, Optional

from config.settings import settings

from .error_classifier import ClassifiedError


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = settings.SYNC_MAX_RETRIES + 1
    base_delay: float = settings.SYNC_RETRY_BASE_DELAY
    max_delay: float = settings.SYNC_RETRY_MAX_DELAY
    multiplier: float = settings.SYNC_RETRY_BACKOFF_MULTIPLIER
    jitter: bool = settings.SYNC_RETRY_JITTER

    def delay_for(self, attempt: int, classified: Optional[ClassifiedError] = None) -> float:
        """
        Seconds to wait before retry number `attempt` (1-based).

        A classification's retry_after raises the delay, but never past
        max_delay.
        """
        delay = self.base_delay * (self.multiplier ** max(attempt - 1, 0))
        delay = min(delay, self.max_delay)

        if self.jitter:
            # +/- 10%
            delay += (random.random() - 0.5) * 2 * delay * 0.1

        if classified is not None and classified.retry_after:
            delay = max(delay, min(classified.retry_after, self.max_delay))

        return max(delay, 0.0)

    def should_retry(self, classified: ClassifiedError, attempt: int) -> bool:
        """`attempt` is the number of attempts already made."""
        return classified.retryable and attempt < self.max_attempts

    def with_max_retries(self, max_retries: int) -> "RetryPolicy":
        """Same backoff, attempts capped by a job's own retry budget."""
        return RetryPolicy(
            max_attempts=min(self.max_attempts, max_retries + 1),
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
            jitter=self.jitter,
        )


DEFAULT_RETRY_POLICY = RetryPolicy()

TARGET_RETRY_POLICIES: Dict[str, RetryPolicy] = {
    "shopee": RetryPolicy(max_attempts=5, base_delay=1.5, max_delay=60.0, multiplier=1.8),
    "tiktok": RetryPolicy(max_attempts=3, base_delay=3.0, max_delay=45.0, multiplier=2.2),
}


def get_retry_policy(target: str) -> RetryPolicy:
    return TARGET_RETRY_POLICIES.get(target, DEFAULT_RETRY_POLICY)
