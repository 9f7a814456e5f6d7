"""
Exponential backoff schedules.

One schedule type serves both places this service waits before trying
again: the analyzer gateway between retries of a single call, and the
polling worker between reconnects after PostgreSQL or Redis failed.
"""

import random


class ExponentialBackoff:
    """
    Exponential backoff with additive jitter and an optional attempt budget.

    Delay for attempt n (0-indexed):
        min(base_delay * multiplier^n + uniform(0, jitter), max_delay)

    ``delay_for`` is stateless; ``next_delay`` walks the schedule and
    counts attempts until ``reset()``. With ``max_attempts`` set,
    ``exhausted`` reports when the budget is spent.

    Usage:
        backoff = ExponentialBackoff(base_delay=2.0, max_delay=120.0, max_attempts=5)
        while running:
            try:
                await run_cycle()
                backoff.reset()
            except Exception:
                if backoff.exhausted:
                    raise
                await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        jitter: float = 0.0,
        max_attempts: int | None = None,
    ):
        if base_delay < 0 or max_delay < 0 or jitter < 0:
            raise ValueError("Backoff delays must be non-negative")
        if multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if max_attempts is not None and max_attempts < 0:
            raise ValueError("max_attempts must be non-negative")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self.max_attempts = max_attempts
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Attempts taken since the last reset."""
        return self._attempt

    @property
    def exhausted(self) -> bool:
        """True once max_attempts delays have been handed out."""
        return self.max_attempts is not None and self._attempt >= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds for attempt number ``attempt``."""
        delay = self.base_delay * (self.multiplier**attempt)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return min(delay, self.max_delay)

    def reaches_ceiling(self, attempts: int) -> bool:
        """Whether any of the first ``attempts`` delays can be cut to max_delay."""
        if attempts <= 0:
            return False
        longest = self.base_delay * (self.multiplier ** (attempts - 1)) + self.jitter
        return longest > self.max_delay

    def next_delay(self) -> float:
        """Return the delay for the current attempt and count it."""
        delay = self.delay_for(self._attempt)
        self._attempt += 1
        return delay

    def reset(self) -> None:
        """Start the schedule over after a success."""
        self._attempt = 0
