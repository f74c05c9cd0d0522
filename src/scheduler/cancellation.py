"""
Cooperative cancellation for alert cycles.
"""

import threading
import time
from typing import Optional


class CancelledError(Exception):
    """Raised when a cycle observes a cancellation request."""


class CancellationToken:
    """Thread-safe cancellation flag with an optional deadline.

    A child token is cancelled whenever its parent is, so the scheduler can stop
    a running cycle while each cycle keeps its own timeout.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        parent: Optional["CancellationToken"] = None,
    ):
        self._event = threading.Event()
        self._parent = parent
        self._deadline = time.monotonic() + timeout if timeout else None

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """True once cancelled, timed out, or the parent is cancelled."""
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return self._parent is not None and self._parent.cancelled

    def raise_if_cancelled(self) -> None:
        """Raise CancelledError if cancellation was requested."""
        if self.cancelled:
            raise CancelledError("Cycle cancelled")

    def wait(self, seconds: float) -> bool:
        """
        Sleep up to ``seconds``, waking early on cancellation.

        Returns:
            True if cancelled
        """
        self._event.wait(seconds)
        return self.cancelled

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        """Create a token that is cancelled together with this one."""
        return CancellationToken(timeout=timeout, parent=self)
