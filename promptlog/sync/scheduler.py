from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class PeriodicJob:
    """Runs ``func`` every ``interval_s`` seconds on a daemon thread.

    Failures in ``func`` are logged and never stop the loop. ``stop`` is
    idempotent and safe to call on a job that was never started; a tick in
    progress is allowed to finish.
    """

    def __init__(self, name: str, interval_s: float, func: Callable[[], object]) -> None:
        self.name = name
        self.interval_s = interval_s
        self.func = func
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop,),
                name=f"promptlog-{self.name}",
                daemon=True,
            )
            self._thread.start()

    def stop(self, timeout_s: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout_s)

    def run_once(self) -> object:
        try:
            return self.func()
        except Exception:
            logger.exception("%s job failed", self.name)
            return None

    def _run(self, stop: threading.Event) -> None:
        interval_s = max(1.0, float(self.interval_s))
        while not stop.wait(interval_s):
            self.run_once()


class SyncScheduler:
    """The two background jobs: failed-log sync and dedup cache cleanup."""

    def __init__(
        self,
        *,
        sync: Callable[[], object],
        cleanup: Callable[[], object],
        sync_interval_s: float = 300,
        cleanup_interval_s: float = 1800,
    ) -> None:
        self.sync_job = PeriodicJob("sync", sync_interval_s, sync)
        self.cleanup_job = PeriodicJob("cache-cleanup", cleanup_interval_s, cleanup)

    @property
    def running(self) -> bool:
        return self.sync_job.running or self.cleanup_job.running

    def start(self) -> None:
        self.sync_job.start()
        self.cleanup_job.start()

    def stop(self) -> None:
        self.sync_job.stop()
        self.cleanup_job.stop()
