"""
Degradation Interface
=====================
The feature-degradation registry the coordinator notifies on recovery.
"""

from enum import Enum
from typing import Any, Protocol


class DegradationLevel(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    MINIMAL = "minimal"
    UNAVAILABLE = "unavailable"


class DegradationManager(Protocol):
    """
    Registry of degraded features, maintained outside this package.

    ``recover`` may be sync or async. The coordinator only ever calls
    ``recover``; degrading happens elsewhere.
    """

    def degrade(self, name: str, level: DegradationLevel) -> Any:
        ...

    def recover(self, name: str) -> Any:
        ...

    def is_degraded(self, name: str) -> bool:
        ...
