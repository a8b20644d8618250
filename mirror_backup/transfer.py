"""Whole-file copy with throttled progress reporting."""

from __future__ import annotations

import logging
import os
import stat
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from tqdm.auto import tqdm

from .errors import TransferError
from .logs import get_logger, log_action

CHUNK_SIZE = 1024 * 1024
PROGRESS_INTERVAL_SEC = 0.1
MIB = 1024 * 1024


# -------------------------
# Progress sinks
# -------------------------

class ProgressHandle(Protocol):
    def update(self, n: int) -> None: ...

    def close(self) -> None: ...


class ProgressSink(Protocol):
    def open(self, description: str, total: int) -> ProgressHandle: ...


class TqdmProgress:
    """One tqdm byte counter per transfer, drawn on stderr so it never fights stdout logs."""

    def open(self, description: str, total: int) -> ProgressHandle:
        return tqdm(
            total=total,
            desc=description,
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            dynamic_ncols=True,
            mininterval=PROGRESS_INTERVAL_SEC,
            leave=False,
            file=sys.stderr,
        )


class _NullHandle:
    def update(self, n: int) -> None:
        pass

    def close(self) -> None:
        pass


class NullProgress:
    def open(self, description: str, total: int) -> ProgressHandle:
        return _NullHandle()


class _Throttle:
    """Batches byte counts so the sink sees at most one update per interval."""

    def __init__(self, handle: ProgressHandle, interval: Optional[float] = None):
        self.handle = handle
        self.interval = PROGRESS_INTERVAL_SEC if interval is None else interval
        self.pending = 0
        self.last = time.monotonic()

    def add(self, n: int) -> None:
        self.pending += n
        now = time.monotonic()
        if now - self.last >= self.interval:
            self.flush()
            self.last = now

    def flush(self) -> None:
        if self.pending:
            self.handle.update(self.pending)
            self.pending = 0


# -------------------------
# Transfer
# -------------------------

@dataclass(frozen=True)
class TransferTask:
    src: Path
    dst: Path
    size: int
    mode: int

    @classmethod
    def from_stat(cls, src: Path, dst: Path, st: os.stat_result) -> "TransferTask":
        return cls(src=src, dst=dst, size=st.st_size, mode=stat.S_IMODE(st.st_mode))


@dataclass(frozen=True)
class TransferResult:
    src: Path
    dst: Path
    bytes_copied: int
    elapsed_sec: float

    @property
    def mib_per_sec(self) -> float:
        return throughput_mib(self.bytes_copied, self.elapsed_sec)


def throughput_mib(size: int, elapsed_sec: float) -> float:
    if elapsed_sec <= 0:
        return 0.0
    return size / (elapsed_sec * MIB)


def transfer_file(
    src: Path,
    dst: Path,
    progress: Optional[ProgressSink] = None,
    logger: Optional[logging.Logger] = None,
    chunk_size: int = CHUNK_SIZE,
    mode: Optional[int] = None,
) -> TransferResult:
    """Copy ``src`` over ``dst`` and give ``dst`` the source's permission bits.

    ``mode`` is the permission set recorded when the file was picked for
    copying; without it the bits are read from the open source file.

    The destination's parent directory must already exist. Any I/O failure
    raises TransferError; whatever was written before the failure stays.
    """
    progress = progress or NullProgress()
    logger = logger or get_logger()
    stage = "open"
    try:
        with open(src, "rb") as fsrc:
            stage = "stat"
            st = os.fstat(fsrc.fileno())
            stage = "create"
            with open(dst, "wb") as fdst:
                handle = progress.open(f"Copying {src.name}", st.st_size)
                throttle = _Throttle(handle)
                copied = 0
                start = time.perf_counter()
                try:
                    stage = "copy"
                    while True:
                        buf = fsrc.read(chunk_size)
                        if not buf:
                            break
                        fdst.write(buf)
                        copied += len(buf)
                        throttle.add(len(buf))
                    throttle.flush()
                    stage = "sync"
                    fdst.flush()
                    os.fsync(fdst.fileno())
                finally:
                    handle.close()
        stage = "chmod"
        os.chmod(dst, stat.S_IMODE(st.st_mode) if mode is None else mode)
    except OSError as e:
        raise TransferError(src, dst, stage, e) from e

    elapsed = time.perf_counter() - start
    result = TransferResult(src=src, dst=dst, bytes_copied=copied, elapsed_sec=elapsed)
    log_action(
        logger,
        "COPY",
        f"Copying {src.name} 100% ({result.mib_per_sec:.2f} MB/s) {elapsed:.2f} seconds",
        path=dst,
        is_dir=False,
    )
    return result


def transfer_task(
    task: TransferTask,
    progress: Optional[ProgressSink] = None,
    logger: Optional[logging.Logger] = None,
) -> TransferResult:
    return transfer_file(task.src, task.dst, progress=progress, logger=logger, mode=task.mode)
