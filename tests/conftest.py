"""Shared fixtures.

Tests assume a single writer per destination tree: no two syncs ever target
the same destination at the same time.
"""

import logging
import os
from pathlib import Path

import pytest

from mirror_backup.config import SyncConfig


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)

    def messages(self, level=logging.DEBUG):
        return [r.getMessage() for r in self.records if r.levelno >= level]


class RecordingProgress:
    """Progress sink remembering every update per description."""

    def __init__(self):
        self.updates = {}
        self.totals = {}
        self.closed = []

    def open(self, description, total):
        self.totals[description] = total
        self.updates.setdefault(description, [])
        sink = self

        class _Handle:
            def update(self, n):
                sink.updates[description].append(n)

            def close(self):
                sink.closed.append(description)

        return _Handle()


def write_file(path: Path, data: bytes = b"data", mtime_ns=None, mode=None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if mode is not None:
        os.chmod(path, mode)
    if mtime_ns is not None:
        os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


@pytest.fixture
def recorder():
    handler = RecordingHandler()
    logger = logging.getLogger(f"mirror_backup.test.{id(handler)}")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(handler)
    logger.recorder = handler
    yield logger
    logger.removeHandler(handler)


@pytest.fixture
def progress():
    return RecordingProgress()


@pytest.fixture
def src_root(tmp_path):
    root = tmp_path / "src"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def dst_root(tmp_path):
    root = tmp_path / "dst"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def make_config(src_root, dst_root):
    def _make(**kwargs):
        kwargs.setdefault("source_root", src_root)
        kwargs.setdefault("dest_root", dst_root)
        kwargs.setdefault("show_progress", False)
        return SyncConfig(**kwargs)

    return _make
