from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from .config import PoolSettings

logger = logging.getLogger(__name__)


class CapacityExceeded(RuntimeError):
    """Raised when no execution slot became free in time."""


@dataclass(slots=True)
class Slot:
    """A held execution slot; release it exactly once.

    Example:
        ```python
        slot = pool.acquire()
        ```
    """

    pool: "WorkerPool"
    acquired_at: float
    released: bool = False

    def release(self) -> None:
        """Return the slot to its pool; repeated calls are ignored.

        Example:
            ```python
            slot.release()
            ```
        """
        if not self.released:
            self.released = True
            self.pool._release()

    def __enter__(self) -> "Slot":
        """Context manager entry.

        Example:
            ```python
            with pool.acquire(): ...
            ```
        """
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        """Release the slot on context exit.

        Example:
            ```python
            with pool.acquire(): ...
            ```
        """
        self.release()


class WorkerPool:
    """Bounded admission control for concurrently running executions.

    At most ``max_workers`` slots are held at once; up to ``max_queue``
    callers wait for a slot for at most ``acquire_timeout`` seconds, and
    everyone beyond that is rejected immediately.

    Example:
        ```python
        pool = WorkerPool(PoolSettings(max_workers=4, max_queue=8, acquire_timeout=5))
        ```
    """

    def __init__(self, settings: PoolSettings) -> None:
        """Initialize an empty thread-safe pool.

        Example:
            ```python
            pool = WorkerPool(PoolSettings(2, 2, 1.0))
            ```
        """
        self.settings = settings
        self._cond = threading.Condition()
        self._in_use = 0
        self._waiting = 0

    @property
    def in_use(self) -> int:
        """Return the number of held slots.

        Example:
            ```python
            busy = pool.in_use
            ```
        """
        with self._cond:
            return self._in_use

    def acquire(self, timeout: float | None = None) -> Slot:
        """Wait for a free slot or raise :class:`CapacityExceeded`.

        Example:
            ```python
            with pool.acquire():
                run()
            ```
        """
        wait_for = self.settings.acquire_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait_for
        with self._cond:
            if self._in_use >= self.settings.max_workers and self._waiting >= self.settings.max_queue:
                raise CapacityExceeded(
                    f"Execution capacity exhausted: {self._in_use} running, {self._waiting} queued"
                )
            self._waiting += 1
            try:
                while self._in_use >= self.settings.max_workers:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise CapacityExceeded(
                            f"Execution capacity exhausted: no slot freed within {wait_for:g}s"
                        )
                    self._cond.wait(remaining)
                self._in_use += 1
            finally:
                self._waiting -= 1
        return Slot(pool=self, acquired_at=time.monotonic())

    def _release(self) -> None:
        """Free one slot and wake one waiter.

        Example:
            ```python
            pool._release()
            ```
        """
        with self._cond:
            if self._in_use <= 0:
                logger.warning("Worker pool released more slots than it handed out")
                return
            self._in_use -= 1
            self._cond.notify()
