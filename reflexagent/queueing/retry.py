"""Bounded retry policy with exponential backoff."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class RetryPolicy:
    """A failed item is retried while ``attempts <= max_retries``.

    With the default of 3 an item gets one initial attempt plus three retries
    before it is dead-lettered.
    """

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0

    def should_retry(self, attempts: int) -> bool:
        return attempts <= self.max_retries

    def delay(self, attempts: int) -> timedelta:
        """Backoff before retry number *attempts* (1-based): base * 2**(n-1), capped."""
        seconds = self.base_delay_seconds * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.max_delay_seconds))
