"""
Outcome Window
==============
Bounded, time-ordered buffer of request outcomes for one breaker.
"""

from collections import deque
from typing import Deque, Iterator

from .models import RequestOutcome


class OutcomeWindow:
    """
    Deque of outcomes evicted by age and by a fixed sample cap.

    Timestamps are assumed non-decreasing, so eviction only ever pops from
    the left. The failure count is kept incrementally.
    """

    def __init__(self, window_ms: float, max_samples: int):
        self.window_ms = window_ms
        self._samples: Deque[RequestOutcome] = deque()
        self._max_samples = max_samples
        self._failures = 0

    def record(self, outcome: RequestOutcome) -> None:
        self._samples.append(outcome)
        if not outcome.success:
            self._failures += 1
        while len(self._samples) > self._max_samples:
            self._pop_oldest()

    def prune(self, now_ms: float) -> None:
        """Drop every outcome older than the window."""
        cutoff = now_ms - self.window_ms
        while self._samples and self._samples[0].timestamp_ms <= cutoff:
            self._pop_oldest()

    def clear(self) -> None:
        self._samples.clear()
        self._failures = 0

    def _pop_oldest(self) -> None:
        oldest = self._samples.popleft()
        if not oldest.success:
            self._failures -= 1

    @property
    def total(self) -> int:
        return len(self._samples)

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def successes(self) -> int:
        return len(self._samples) - self._failures

    @property
    def failure_rate(self) -> float:
        if not self._samples:
            return 0.0
        return self._failures / len(self._samples)

    def __iter__(self) -> Iterator[RequestOutcome]:
        return iter(self._samples)

    def __len__(self) -> int:
        return len(self._samples)
