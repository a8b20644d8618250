from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from .logs import get_logger


class ConcurrencyLimiter:
    """Runs each admitted job on its own thread, at most ``max_in_flight`` at once.

    ``submit`` blocks the caller until a slot is free. The slot is given back
    when the job returns or raises. ``join`` waits for every submitted job.
    Exceptions are collected in ``errors`` and passed to ``on_error``.
    """

    def __init__(
        self,
        max_in_flight: int = 1,
        on_error: Optional[Callable[[BaseException], None]] = None,
        logger: Optional[logging.Logger] = None,
        name: str = "transfer",
    ):
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be at least 1, got {max_in_flight}")
        self.max_in_flight = max_in_flight
        self.on_error = on_error
        self.logger = logger or get_logger()
        self.name = name
        self._slots = threading.BoundedSemaphore(max_in_flight)
        self._guard = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._in_flight = 0
        self.peak = 0
        self.completed = 0
        self.errors: list[BaseException] = []

    @property
    def in_flight(self) -> int:
        with self._guard:
            return self._in_flight

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> threading.Thread:
        self._slots.acquire()
        with self._guard:
            self._in_flight += 1
            self.peak = max(self.peak, self._in_flight)
            t = threading.Thread(
                target=self._run,
                args=(fn, args, kwargs),
                name=f"{self.name}-{len(self._threads)}",
                daemon=True,
            )
            self._threads.append(t)
        try:
            t.start()
        except BaseException:
            with self._guard:
                self._threads.remove(t)
            self._release()
            raise
        return t

    def _run(self, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        try:
            fn(*args, **kwargs)
        except Exception as e:
            with self._guard:
                self.errors.append(e)
            if self.on_error is not None:
                self.on_error(e)
            else:
                self.logger.error("%s failed: %s", self.name, e)
        finally:
            self._release()

    def _release(self) -> None:
        with self._guard:
            self._in_flight -= 1
            self.completed += 1
        self._slots.release()

    def join(self) -> None:
        while True:
            with self._guard:
                pending, self._threads = self._threads, []
            if not pending:
                return
            for t in pending:
                t.join()
