"""
Clock
=====
Millisecond wall clock used for every window and timeout calculation.

Components accept any ``Callable[[], float]`` returning milliseconds so tests
can drive time explicitly.
"""

import time
from typing import Callable

Clock = Callable[[], float]


def now_ms() -> float:
    """Current wall-clock time in milliseconds."""
    return time.time() * 1000
