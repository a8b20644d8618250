"""Mirror a source directory tree into a backup directory, live or on a schedule."""

from .config import SyncConfig
from .errors import MirrorBackupError, SetupError, TransferError, WalkError
from .filters import InclusionFilter, included
from .limiter import ConcurrencyLimiter
from .staleness import needs_copy
from .synchronizer import SyncStats, TreeSynchronizer, sync_directories
from .transfer import NullProgress, TqdmProgress, TransferResult, transfer_file
from .watcher import ChangeWatcher, MirrorHandler

__version__ = "0.1.0"

__all__ = [
    "ChangeWatcher",
    "ConcurrencyLimiter",
    "InclusionFilter",
    "MirrorBackupError",
    "MirrorHandler",
    "NullProgress",
    "SetupError",
    "SyncConfig",
    "SyncStats",
    "TqdmProgress",
    "TransferError",
    "TransferResult",
    "TreeSynchronizer",
    "WalkError",
    "included",
    "needs_copy",
    "sync_directories",
    "transfer_file",
]
