"""
Fixed-delay background loop for periodic alert cycles.
"""

import logging
import threading
from typing import Callable, Optional

from .cancellation import CancellationToken

logger = logging.getLogger(__name__)


class CycleScheduler:
    """Runs a job on a daemon thread with a fixed delay between runs.

    The delay is measured from the end of one run to the start of the next, so
    runs of the same job never overlap. ``stop()`` also cancels the run in flight
    through the token handed to the job.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[CancellationToken], object],
        interval_seconds: float,
        startup_delay_seconds: float = 0.0,
        cycle_timeout_seconds: Optional[float] = None,
    ):
        self.name = name
        self.job = job
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self.cycle_timeout_seconds = cycle_timeout_seconds
        self._stop = CancellationToken()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread."""
        if self.running:
            return
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info(
            f"{self.name} started (interval {self.interval_seconds}s, "
            f"startup delay {self.startup_delay_seconds}s)"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to stop and wait for the thread to exit."""
        self._stop.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info(f"{self.name} stopped")

    def run_once(self) -> object:
        """Run the job a single time on the calling thread."""
        token = self._stop.child(timeout=self.cycle_timeout_seconds)
        try:
            return self.job(token)
        except Exception:
            logger.exception(f"{self.name} run failed")
            return None

    def _loop(self) -> None:
        if self.startup_delay_seconds and self._stop.wait(self.startup_delay_seconds):
            return
        while not self._stop.cancelled:
            self.run_once()
            if self._stop.wait(self.interval_seconds):
                break
