"""
Cooperative Deadline — explicit time budget for long-running searches.

Search loops call ``expired()`` between units of work and stop early when
it returns True. Nothing is preempted: whatever was gathered before the
check is kept. Callers in any concurrency model can cut a search short by
calling ``cancel()`` or by handing in a shorter budget.
"""

import time
from collections.abc import Callable


class Deadline:
    """A wall-clock budget measured on a monotonic clock."""

    def __init__(self, budget_seconds: float, clock: Callable[[], float] = time.perf_counter):
        if budget_seconds < 0:
            raise ValueError(f"Deadline budget cannot be negative (got {budget_seconds})")
        self._clock = clock
        self._budget = float(budget_seconds)
        self._started = clock()
        self._cancelled = False

    @classmethod
    def after(cls, seconds: float, clock: Callable[[], float] = time.perf_counter) -> "Deadline":
        return cls(seconds, clock=clock)

    @property
    def budget_seconds(self) -> float:
        return self._budget

    def elapsed(self) -> float:
        return self._clock() - self._started

    def remaining(self) -> float:
        if self._cancelled:
            return 0.0
        return max(0.0, self._budget - self.elapsed())

    def cancel(self) -> None:
        """Expire the deadline immediately."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def expired(self) -> bool:
        return self._cancelled or self.elapsed() > self._budget
