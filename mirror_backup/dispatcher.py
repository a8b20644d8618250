from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Optional

from .config import SyncConfig
from .errors import WalkError
from .logs import get_logger, log_action
from .scheduler import IntervalScheduler
from .synchronizer import SyncStats, TreeSynchronizer
from .transfer import NullProgress, ProgressSink, TqdmProgress
from .watcher import ChangeWatcher

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _now() -> str:
    return dt.datetime.now().strftime(TIME_FORMAT)


def progress_for(config: SyncConfig) -> ProgressSink:
    return TqdmProgress() if config.show_progress else NullProgress()


def run_scheduled_backup(
    config: SyncConfig,
    progress: Optional[ProgressSink] = None,
    logger: Optional[logging.Logger] = None,
) -> Optional[SyncStats]:
    """One full-tree sync. A walk error is logged and None returned."""
    logger = logger or get_logger()
    log_action(logger, "SYNC", f"Starting scheduled backup at {_now()}")
    try:
        stats = TreeSynchronizer(config, progress=progress, logger=logger).sync()
    except WalkError as e:
        log_action(logger, "SYNC", f"Error during scheduled backup: {e}", level=logging.ERROR)
        return None
    log_action(
        logger,
        "SYNC",
        f"Scheduled backup completed at {_now()} "
        f"(copied={stats.files_copied} skipped={stats.files_skipped} "
        f"excluded={stats.files_excluded} errors={len(stats.errors)} bytes={stats.bytes_dispatched})",
    )
    return stats


def run_real_time_sync(
    config: SyncConfig,
    stop_event: Optional[threading.Event] = None,
    progress: Optional[ProgressSink] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    logger = logger or get_logger()
    log_action(logger, "SYNC", f"Starting real-time sync at {_now()}")
    ChangeWatcher(config, progress=progress, logger=logger).run(stop_event)
    log_action(logger, "SYNC", f"Real-time sync stopped at {_now()}")


def run(
    config: SyncConfig,
    stop_event: Optional[threading.Event] = None,
    progress: Optional[ProgressSink] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Periodic full syncs when an interval is configured, otherwise watch for changes."""
    logger = logger or get_logger()
    progress = progress or progress_for(config)
    if config.scheduled:
        scheduler = IntervalScheduler(
            config.interval_sec,
            lambda: run_scheduled_backup(config, progress=progress, logger=logger),
            logger=logger,
        )
        scheduler.run(stop_event)
    else:
        run_real_time_sync(config, stop_event=stop_event, progress=progress, logger=logger)
