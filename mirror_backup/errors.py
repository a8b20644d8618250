from __future__ import annotations

from pathlib import Path
from typing import Optional


class MirrorBackupError(Exception):
    """Base class for errors raised by mirror_backup."""


class SetupError(MirrorBackupError, ValueError):
    """Invalid configuration or a failure before any transfer begins."""


class WalkError(MirrorBackupError):
    """Traversal of the source tree failed; the sync invocation is aborted."""

    def __init__(self, path: Optional[str], error: OSError):
        self.path = path
        self.error = error
        super().__init__(f"walk failed at {path}: {error}")


class TransferError(MirrorBackupError, OSError):
    """Copying a single file failed; carries the errno of the underlying OSError."""

    def __init__(self, src: Path, dst: Path, stage: str, error: OSError):
        self.src = src
        self.dst = dst
        self.stage = stage
        self.error = error
        message = f"{stage} failed copying {src} -> {dst}: {error}"
        if error.errno is None:
            super().__init__(message)
        else:
            super().__init__(error.errno, message)
