"""Real-time mirroring driven by filesystem change notifications."""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import SyncConfig
from .errors import SetupError, TransferError
from .filters import InclusionFilter
from .logs import get_logger, log_action
from .transfer import NullProgress, ProgressSink, transfer_file

POLL_SEC = 0.5


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _to_path(raw) -> Path:
    return Path(os.fsdecode(raw))


def folder_includes(source_root: Path, patterns) -> list[Path]:
    """Include entries that name an existing folder below the source root, relative to it."""
    root = source_root.resolve()
    found: list[Path] = []
    for pattern in patterns:
        if not pattern:
            continue
        candidate = (root / pattern).resolve()
        if candidate.is_dir() and (candidate == root or root in candidate.parents):
            rel = candidate.relative_to(root)
            if rel not in found:
                found.append(rel)
    return found


class MirrorHandler(FileSystemEventHandler):
    """Copies created or written files into the destination tree.

    Directory events are ignored, so folders created after startup are not
    subscribed to. Each accepted event is copied on its own thread with no
    concurrency limit; events for the same destination file are serialised.
    """

    def __init__(
        self,
        config: SyncConfig,
        progress: Optional[ProgressSink] = None,
        logger: Optional[logging.Logger] = None,
        transfer: Callable[..., object] = transfer_file,
    ):
        self.source_root = config.source_root
        self.dest_root = config.dest_root
        self.filter = InclusionFilter(config.include, match_dirs=True)
        self.scopes = folder_includes(config.source_root, config.include)
        self.progress = progress or NullProgress()
        self.logger = logger or get_logger()
        self.transfer = transfer
        self._locks: dict[Path, list] = {}
        self._locks_guard = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._threads_guard = threading.Lock()

    @contextmanager
    def _dest_lock(self, dst: Path):
        """Serialise copies to one destination; the lock is dropped when nobody holds or waits for it."""
        with self._locks_guard:
            entry = self._locks.get(dst)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[dst] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[dst]

    def included(self, rel: Path) -> bool:
        if any(scope in rel.parents for scope in self.scopes):
            return True
        return self.filter.included(rel)

    def dispatch(self, event: FileSystemEvent) -> None:
        try:
            super().dispatch(event)
        except Exception as e:
            self.logger.error("Error handling %s event for %s: %s", event.event_type, event.src_path, e)

    def on_created(self, event):
        if event.is_directory:
            return
        self.handle_change(_to_path(event.src_path))

    def on_modified(self, event):
        if event.is_directory:
            return
        self.handle_change(_to_path(event.src_path))

    def on_moved(self, event):
        # a rename into place is a create of the new name
        if event.is_directory:
            return
        self.handle_change(_to_path(event.dest_path))

    def handle_change(self, src: Path) -> Optional[threading.Thread]:
        try:
            rel = src.relative_to(self.source_root)
        except ValueError:
            return None
        if not self.included(rel):
            return None

        log_action(self.logger, "WATCH", f"Detected modification: {src}", path=src, is_dir=False)
        dst = self.dest_root / rel
        t = threading.Thread(target=self._copy, args=(src, dst), name=f"watch-copy-{rel}", daemon=True)
        with self._threads_guard:
            self._threads = [x for x in self._threads if x.is_alive()]
            self._threads.append(t)
        t.start()
        return t

    def _copy(self, src: Path, dst: Path) -> None:
        with self._dest_lock(dst):
            try:
                ensure_parent(dst)
                self.transfer(src, dst, progress=self.progress, logger=self.logger)
            except TransferError as e:
                log_action(self.logger, "COPY", f"ERROR {e}", path=src, is_dir=False, level=logging.ERROR)
            except OSError as e:
                log_action(self.logger, "MKDIR", f"ERROR mkdir: {dst.parent} | {e}", path=dst.parent, is_dir=True, level=logging.ERROR)

    def join_transfers(self, timeout: Optional[float] = None) -> None:
        with self._threads_guard:
            pending = list(self._threads)
        for t in pending:
            t.join(timeout)


class ChangeWatcher:
    """Subscribes to every directory under the source root and mirrors changes until stopped."""

    def __init__(
        self,
        config: SyncConfig,
        progress: Optional[ProgressSink] = None,
        logger: Optional[logging.Logger] = None,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.config = config
        self.logger = logger or get_logger()
        self.handler = MirrorHandler(config, progress=progress, logger=self.logger)
        self.observer_factory = observer_factory
        self.observer = None

    def watch_roots(self) -> list[Path]:
        """Include patterns naming existing folders under the source root narrow the subscription."""
        root = self.config.source_root.resolve()
        return [root / rel for rel in folder_includes(root, self.config.include)] or [root]

    def watch_dirs(self) -> list[Path]:
        seen: set[Path] = set()
        dirs: list[Path] = []

        def _fail(err: OSError) -> None:
            raise SetupError(f"Error walking source directory: {err}")

        for top in self.watch_roots():
            for dirpath, dirnames, _ in os.walk(top, onerror=_fail):
                dirnames.sort()
                d = Path(dirpath)
                if d not in seen:
                    seen.add(d)
                    dirs.append(d)
        return dirs

    def start(self) -> None:
        dirs = self.watch_dirs()
        observer = self.observer_factory()
        try:
            for d in dirs:
                observer.schedule(self.handler, str(d), recursive=False)
            observer.start()
        except OSError as e:
            raise SetupError(f"Error creating watcher: {e}") from e
        self.observer = observer
        log_action(self.logger, "WATCH", f"watching {len(dirs)} directories under {self.config.source_root}")

    def stop(self, timeout: float = 10.0) -> None:
        if self.observer is not None:
            self.observer.stop()
            self.observer.join(timeout=timeout)
            self.observer = None
        self.handler.join_transfers(timeout)

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Block until ``stop_event`` is set or the observer thread dies."""
        stop_event = stop_event or threading.Event()
        self.start()
        try:
            while not stop_event.wait(POLL_SEC):
                if not self.observer.is_alive():
                    self.logger.error("Change notifications stopped; leaving watch loop")
                    break
        finally:
            self.stop()
