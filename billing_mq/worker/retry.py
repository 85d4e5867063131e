"""
Retry policy for failed deliveries.

Each failed delivery increments the envelope's ``retry_count``. While the
count is below ``max_retries`` the envelope is re-delayed by
``2 ** retry_count * base_delay_ms``; once it reaches ``max_retries`` the
envelope is dead-lettered.

``max_retries`` counts failed deliveries, not re-deliveries. With the default
budget of 3 and a 1s base, the waits are 2s and 4s and the third failure is
dead-lettered, so no 8s backoff is ever scheduled. Client documentation
describing ``maxRetries=3`` as giving 2s, 4s and 8s is wrong: that cannot
hold together with dead-lettering at ``retryCount >= maxRetries``, and this
module keeps the dead-letter boundary.

Examples
--------
>>> policy = RetryPolicy(max_retries=3, base_delay_ms=1000)
>>> [policy.decide(n).delay_ms for n in (1, 2)]
[2000, 4000]
>>> policy.decide(3).should_retry
False
"""

from dataclasses import dataclass

from billing_mq.constants import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_BASE_DELAY_MS


@dataclass(frozen=True)
class RetryDecision:
    """
    Decision computed for a failed delivery.

    Attributes
    ----------
    should_retry: bool
        Whether the envelope goes back to the delayed set.
    delay_ms: int
        Delay before the next attempt; 0 when not retrying.
    retry_count: int
        The failure count the decision was made for.
    """

    should_retry: bool
    delay_ms: int
    retry_count: int


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff bounded by a failure budget."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: int = DEFAULT_RETRY_BASE_DELAY_MS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")

    def delay_ms(self, retry_count: int) -> int:
        """Backoff before the attempt following failure number ``retry_count``."""
        return (2**retry_count) * self.base_delay_ms

    def should_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries

    def decide(self, retry_count: int) -> RetryDecision:
        """Decide what happens after failure number ``retry_count``."""
        if self.should_retry(retry_count):
            return RetryDecision(True, self.delay_ms(retry_count), retry_count)
        return RetryDecision(False, 0, retry_count)
