"""
Admission counter.
Bounds the number of jobs admitted (preprocessing, queued or running).
"""

import logging
import threading

logger = logging.getLogger(__name__)


class AdmissionCounter:
    """
    Counts admitted jobs against a fixed capacity.

    try_admit() checks and increments in one step under a lock, so
    concurrent callers can never push the count past capacity.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._count = 0
        self._lock = threading.Lock()

    def try_admit(self) -> bool:
        """Reserve one slot. Returns False, with no state change, when full."""
        with self._lock:
            if self._count >= self._capacity:
                return False
            self._count += 1
            return True

    def release(self) -> None:
        """Give back a slot reserved by try_admit()."""
        with self._lock:
            if self._count == 0:
                raise RuntimeError("release() called with no admitted jobs")
            self._count -= 1

    @property
    def value(self) -> int:
        """Number of jobs admitted and not yet released."""
        return self._count

    @property
    def capacity(self) -> int:
        return self._capacity
