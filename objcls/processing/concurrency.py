"""
Admission control for external inference invocations.

A ConcurrencyGate bounds how many invocations run at once across every
thread that shares it. A gate configured with max_parallel <= 0 (or None)
admits everyone.
"""

import threading
from typing import Optional

from objcls.utils.logging import get_logger

logger = get_logger(__name__)


class ConcurrencyGate:
    """
    Counting gate used as a context manager around each invocation.

    Acquire blocks without timeout until a slot is free. Release runs on
    context exit whether or not the guarded call raised.

    Attributes:
        max_parallel: Slot count, or None for unlimited
        active: Invocations currently inside the gate
        peak: Highest value active has reached
    """

    def __init__(self, max_parallel: Optional[int] = None):
        self.max_parallel = max_parallel if max_parallel and max_parallel > 0 else None
        self._semaphore = (
            threading.BoundedSemaphore(self.max_parallel) if self.max_parallel is not None else None
        )
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0

    @property
    def unlimited(self) -> bool:
        return self._semaphore is None

    def acquire(self) -> None:
        if self._semaphore is not None and not self._semaphore.acquire(blocking=False):
            logger.debug(f"Waiting for an inference slot ({self.max_parallel} in use)")
            self._semaphore.acquire()
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)

    def release(self) -> None:
        with self._lock:
            self.active -= 1
        if self._semaphore is not None:
            self._semaphore.release()

    def __enter__(self) -> "ConcurrencyGate":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def __repr__(self) -> str:
        limit = "unlimited" if self.unlimited else self.max_parallel
        return f"ConcurrencyGate(max_parallel={limit}, active={self.active}, peak={self.peak})"
