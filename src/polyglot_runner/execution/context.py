from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

CANCEL_TIMEOUT = "timeout"
CANCEL_REQUESTED = "cancelled"


class CancelToken:
    """Cancellation signal shared by every phase of one execution.

    A token settles once: it is either cancelled (with a reason) or closed
    because the guarded work finished. Whichever happens first wins and the
    other becomes a no-op.

    Example:
        ```python
        token = CancelToken()
        phase = token.child(timeout_seconds=2)
        ```
    """

    def __init__(self) -> None:
        """Create an open, uncancelled token.

        Example:
            ```python
            token = CancelToken()
            ```
        """
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._reason: str | None = None
        self._closed = False
        self._callbacks: list[Callable[[str], None]] = []
        self._timer: threading.Timer | None = None
        self._detach: Callable[[], None] | None = None

    @property
    def cancelled(self) -> bool:
        """Return True once the token has been cancelled.

        Example:
            ```python
            if token.cancelled: ...
            ```
        """
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Return why the token was cancelled, if it was.

        Example:
            ```python
            timed_out = token.reason == CANCEL_TIMEOUT
            ```
        """
        return self._reason

    def cancel(self, reason: str = CANCEL_REQUESTED) -> bool:
        """Cancel the token and run its callbacks; return False if already settled.

        Example:
            ```python
            token.cancel()
            ```
        """
        with self._lock:
            if self._closed or self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Cancellation callback failed")
        return True

    def on_cancel(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Register ``callback(reason)``; runs immediately if already cancelled.

        Returns a function that unregisters the callback.

        Example:
            ```python
            remove = token.on_cancel(lambda reason: proc.kill())
            ```
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _remove() -> None:
                    """Detach the callback.

                    Example:
                        ```python
                        remove()
                        ```
                    """
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _remove
            reason = self._reason or CANCEL_REQUESTED
        callback(reason)
        return lambda: None

    def child(self, timeout_seconds: float | None = None) -> "CancelToken":
        """Derive a token cancelled by this one or by its own timeout.

        Example:
            ```python
            compile_token = token.child(timeout_seconds=30)
            ```
        """
        child = CancelToken()
        child._detach = self.on_cancel(child.cancel)
        if timeout_seconds is not None:
            timer = threading.Timer(timeout_seconds, child.cancel, args=(CANCEL_TIMEOUT,))
            timer.daemon = True
            child._timer = timer
            timer.start()
        return child

    def close(self) -> bool:
        """Mark the guarded work finished; return True if it was cancelled first.

        Example:
            ```python
            timed_out = phase.close() and phase.reason == CANCEL_TIMEOUT
            ```
        """
        with self._lock:
            self._closed = True
            self._callbacks.clear()
            was_cancelled = self._event.is_set()
        if self._timer is not None:
            self._timer.cancel()
        if self._detach is not None:
            self._detach()
        return was_cancelled

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses.

        Example:
            ```python
            token.wait(0.1)
            ```
        """
        return self._event.wait(timeout)
