"""
Retry Policy

Decides whether a classified failure is retried and how long to wait first.

Rules:
    - Only TRANSPORT and RATE_LIMIT are retried; every other kind is terminal
    - At most `max_attempts` sends per call (default 3 = up to 2 retries)
    - Delay before retry n: base_delay * multiplier ** (n - 1)
      (defaults 1000 ms, x2 -> 1s, 2s, 4s, ...)
    - A retry-after hint on the error replaces the computed delay
    - A wait longer than max_delay is not accepted: the policy gives up instead
"""

from typing import Optional

from pydantic import BaseModel

from core.errors import ClassifiedError


class RetryDecision(BaseModel):
    """
    Outcome of RetryPolicy.should_retry().

    Attributes:
        retry: True to wait and send again, False to give up
        delay: Seconds to wait before the next attempt (0 when giving up)
    """

    retry: bool
    delay: float = 0.0

    @classmethod
    def wait(cls, delay: float) -> "RetryDecision":
        return cls(retry=True, delay=delay)

    @classmethod
    def give_up(cls) -> "RetryDecision":
        return cls(retry=False)


class RetryPolicy:
    """
    Exponential backoff policy.

    Attributes:
        max_attempts: Total number of sends allowed for one call
        base_delay: Delay before the first retry (seconds)
        multiplier: Growth factor between consecutive delays
        max_delay: Longest wait accepted (seconds); None = unbounded

    Example:
        >>> policy = RetryPolicy(max_attempts=4)
        >>> [policy.should_retry(n, TransportError("timeout")).delay for n in (1, 2, 3)]
        [1.0, 2.0, 4.0]
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: Optional[float] = None
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_ms / 1000,
            multiplier=settings.retry_multiplier,
            max_delay=settings.retry_max_delay_ms / 1000,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Computed delay (seconds) after failed attempt number `attempt` (1-based)."""
        return self.base_delay * self.multiplier ** (attempt - 1)

    def should_retry(self, attempt: int, error: ClassifiedError) -> RetryDecision:
        """
        Decide what to do after attempt number `attempt` failed with `error`.

        Args:
            attempt: Number of sends made so far for this call (1-based)
            error: Classified failure of the latest attempt

        Returns:
            RetryDecision.wait(delay) or RetryDecision.give_up()
        """
        if not error.retryable:
            return RetryDecision.give_up()

        if attempt >= self.max_attempts:
            return RetryDecision.give_up()

        delay = error.retry_after if error.retry_after is not None else self.backoff_delay(attempt)

        if self.max_delay is not None and delay > self.max_delay:
            return RetryDecision.give_up()

        return RetryDecision.wait(delay)
