"""Full-tree synchronisation from the source root into the destination root."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .config import SyncConfig
from .errors import TransferError, WalkError
from .filters import InclusionFilter
from .limiter import ConcurrencyLimiter
from .logs import get_logger, log_action
from .staleness import needs_copy
from .transfer import NullProgress, ProgressSink, TransferTask, transfer_task


@dataclass
class SyncStats:
    dirs_created: int = 0
    files_dispatched: int = 0
    files_skipped: int = 0
    files_excluded: int = 0
    bytes_dispatched: int = 0
    errors: list[BaseException] = field(default_factory=list)
    peak_in_flight: int = 0

    @property
    def files_copied(self) -> int:
        return self.files_dispatched - len(self.errors)


def _raise(err: OSError) -> None:
    raise WalkError(err.filename, err)


class TreeSynchronizer:
    """Walks the source tree once and copies every new or updated file.

    Directories are mirrored as they are reached (parents before children).
    Files that pass the inclusion filter and are stale at the destination
    are handed to a ConcurrencyLimiter; the call returns only after every
    dispatched copy has finished. A traversal error aborts the walk, but a
    failed copy is logged and does not stop other files.
    """

    def __init__(
        self,
        config: SyncConfig,
        progress: Optional[ProgressSink] = None,
        logger: Optional[logging.Logger] = None,
        transfer: Callable[..., object] = transfer_task,
    ):
        self.config = config
        self.filter = InclusionFilter(config.include)
        self.progress = progress or NullProgress()
        self.logger = logger or get_logger()
        self.transfer = transfer

    def sync(self) -> SyncStats:
        src_root = self.config.source_root
        dst_root = self.config.dest_root
        stats = SyncStats()
        limiter = ConcurrencyLimiter(
            self.config.max_transfers,
            on_error=lambda e: self._on_copy_error(e, stats),
            logger=self.logger,
        )

        try:
            for dirpath, dirnames, filenames in os.walk(src_root, onerror=_raise):
                dirnames.sort()
                src_dir = Path(dirpath)
                dst_dir = dst_root / src_dir.relative_to(src_root)

                st_dir = os.stat(src_dir)
                self._ensure_dir(dst_dir, st_dir, stats)

                for name in sorted(filenames):
                    src = src_dir / name
                    try:
                        st = os.stat(src)
                    except FileNotFoundError:
                        # vanished since listing, or a dangling symlink
                        self.logger.warning("Skipping missing file: %s", src)
                        continue
                    if not stat.S_ISREG(st.st_mode):
                        continue
                    if not self.filter.included(src):
                        stats.files_excluded += 1
                        continue
                    dst = dst_dir / name
                    if not needs_copy(st, dst):
                        stats.files_skipped += 1
                        continue
                    task = TransferTask.from_stat(src, dst, st)
                    stats.files_dispatched += 1
                    stats.bytes_dispatched += task.size
                    limiter.submit(self.transfer, task, self.progress, self.logger)
        except OSError as e:
            raise WalkError(getattr(e, "filename", None), e) from e
        finally:
            limiter.join()
            stats.peak_in_flight = limiter.peak

        return stats

    def _ensure_dir(self, dst_dir: Path, st: os.stat_result, stats: SyncStats) -> None:
        if dst_dir.exists():
            return
        mode = stat.S_IMODE(st.st_mode)
        dst_dir.mkdir(mode=mode, parents=True)
        os.chmod(dst_dir, mode)
        stats.dirs_created += 1
        log_action(self.logger, "MKDIR", f"(sync) {dst_dir}", path=dst_dir, is_dir=True)

    def _on_copy_error(self, e: BaseException, stats: SyncStats) -> None:
        stats.errors.append(e)
        if isinstance(e, TransferError):
            log_action(self.logger, "COPY", f"ERROR {e}", path=e.src, is_dir=False, level=logging.ERROR)
        else:
            self.logger.error("Error copying file: %s", e)


def sync_directories(
    config: SyncConfig,
    progress: Optional[ProgressSink] = None,
    logger: Optional[logging.Logger] = None,
) -> SyncStats:
    return TreeSynchronizer(config, progress=progress, logger=logger).sync()
