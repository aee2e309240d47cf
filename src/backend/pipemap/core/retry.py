import random
from typing import Optional

class RetryPolicy:
    """
    Exponential backoff schedule for failed writes.

    Usage:
        policy = RetryPolicy(max_retries=3, initial_delay=1.0)
        policy.delay_for(1)  # 1.0
        policy.delay_for(2)  # 2.0
    """
    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        backoff_factor: float = 2.0,
        jitter: bool = False,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter

    def delay_for(self, retry_count: int) -> float:
        """Wait before the attempt that follows failure number `retry_count` (1-based)."""
        delay = self.initial_delay * (self.backoff_factor ** max(0, retry_count - 1))
        if self.jitter:
            delay *= (0.5 + random.random()) # 0.5x to 1.5x jitter
        return delay

    def should_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries

    def next_delay(self, retry_count: int) -> Optional[float]:
        """Delay before the next automatic attempt, or None once the budget is spent."""
        if not self.should_retry(retry_count):
            return None
        return self.delay_for(retry_count)
