from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .logs import get_logger


class IntervalScheduler:
    """Fires ``job`` immediately and then once every ``period_sec`` until stopped.

    Every tick runs on a fresh thread, so a job that outlives its interval
    overlaps the next one instead of delaying it.
    """

    def __init__(
        self,
        period_sec: float,
        job: Callable[[], object],
        logger: Optional[logging.Logger] = None,
        run_immediately: bool = True,
    ):
        if period_sec <= 0:
            raise ValueError(f"period must be positive, got {period_sec}")
        self.period_sec = float(period_sec)
        self.job = job
        self.logger = logger or get_logger()
        self.run_immediately = run_immediately
        self.runs = 0
        self._threads: list[threading.Thread] = []

    def _fire(self) -> threading.Thread:
        self.runs += 1
        t = threading.Thread(target=self._run_job, name=f"scheduled-{self.runs}", daemon=True)
        self._threads = [x for x in self._threads if x.is_alive()]
        self._threads.append(t)
        t.start()
        return t

    def _run_job(self) -> None:
        try:
            self.job()
        except Exception:
            self.logger.exception("Scheduled job failed")

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Block until ``stop_event`` is set, then wait for running jobs."""
        stop_event = stop_event or threading.Event()
        next_at = time.monotonic()
        if not self.run_immediately:
            next_at += self.period_sec
        try:
            while not stop_event.is_set():
                now = time.monotonic()
                if now >= next_at:
                    self._fire()
                    next_at += self.period_sec
                    if next_at <= now:
                        next_at = now + self.period_sec
                stop_event.wait(max(0.0, next_at - time.monotonic()))
        finally:
            self.join()

    def join(self, timeout: Optional[float] = None) -> None:
        for t in list(self._threads):
            t.join(timeout)
