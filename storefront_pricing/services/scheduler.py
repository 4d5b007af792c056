"""
Periodic job scheduler.

Runs a function on a fixed interval in a background thread. Executions of
the same job never overlap: a tick that finds the previous run still in
flight is skipped and logged.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class PeriodicJob:
    """
    A named job run every `interval_seconds`.

    The job function receives a stop event; long-running jobs should check
    it between units of work so stop() lets the current unit finish and
    schedules no more.

    Attributes:
        name: Job name used in logs and stats.
        func: Callable taking the stop event.
        interval_seconds: Delay between ticks.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[threading.Event], Any],
        interval_seconds: float,
        run_immediately: bool = True,
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately

        self._stop_event = threading.Event()
        self._run_lock = threading.Lock()
        self._loop_thread: Optional[threading.Thread] = None
        self._worker: Optional[threading.Thread] = None

        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self.last_started_at: Optional[datetime] = None
        self.last_finished_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_result: Any = None

    @property
    def is_running(self) -> bool:
        """True while an execution is in flight."""
        return self._run_lock.locked()

    @property
    def is_started(self) -> bool:
        return self._loop_thread is not None and self._loop_thread.is_alive()

    def _execute(self) -> None:
        try:
            self.last_started_at = datetime.now(timezone.utc)
            logger.info(f"Job {self.name} started")
            start = time.time()
            self.last_result = self.func(self._stop_event)
            self.runs += 1
            self.last_error = None
            logger.info(f"Job {self.name} finished in {time.time() - start:.2f}s")
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            logger.exception(f"Job {self.name} failed: {e}")
        finally:
            self.last_finished_at = datetime.now(timezone.utc)
            self._run_lock.release()

    def trigger(self, wait: bool = False) -> bool:
        """
        Start one execution unless one is already running.

        Args:
            wait: Block until the execution finishes.

        Returns:
            bool: True if an execution was started, False if the tick was skipped.
        """
        if not self._run_lock.acquire(blocking=False):
            self.skipped += 1
            logger.warning(f"Job {self.name} still running, skipping tick")
            return False

        worker = threading.Thread(target=self._execute, name=f"job-{self.name}", daemon=True)
        self._worker = worker
        worker.start()
        if wait:
            worker.join()
        return True

    def _loop(self) -> None:
        if self.run_immediately:
            self.trigger()
        while not self._stop_event.wait(self.interval_seconds):
            self.trigger()

    def start(self) -> None:
        """Start ticking in a background thread."""
        if self.is_started:
            return
        self._stop_event.clear()
        self._loop_thread = threading.Thread(
            target=self._loop, name=f"scheduler-{self.name}", daemon=True
        )
        self._loop_thread.start()
        logger.info(f"Scheduled job {self.name} every {self.interval_seconds}s")

    def stop(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop ticking and signal the running execution to stop scheduling work.

        Args:
            wait: Join the in-flight execution.
            timeout: Join timeout in seconds.
        """
        self._stop_event.set()
        if self._loop_thread is not None:
            self._loop_thread.join(timeout)
            self._loop_thread = None
        if wait and self._worker is not None:
            self._worker.join(timeout)
        logger.info(f"Stopped job {self.name}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "running": self.is_running,
            "started": self.is_started,
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": (
                self.last_finished_at.isoformat() if self.last_finished_at else None
            ),
            "last_error": self.last_error,
        }
