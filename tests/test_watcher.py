"""Tests for real-time mirroring."""

import threading
import time

import pytest
from watchdog.events import DirCreatedEvent, FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from mirror_backup.errors import SetupError
from mirror_backup.watcher import ChangeWatcher, MirrorHandler

from .conftest import write_file


def _wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestMirrorHandler:
    def test_created_file_copied(self, src_root, dst_root, make_config, recorder):
        src = write_file(src_root / "a.txt", b"hello")
        handler = MirrorHandler(make_config(), logger=recorder)

        handler.dispatch(FileCreatedEvent(str(src)))
        handler.join_transfers()

        assert (dst_root / "a.txt").read_bytes() == b"hello"
        assert any("Detected modification" in m for m in recorder.recorder.messages())

    def test_modified_file_creates_parent_on_demand(self, src_root, dst_root, make_config, recorder):
        src = write_file(src_root / "new" / "dir" / "b.txt", b"nested")
        handler = MirrorHandler(make_config(), logger=recorder)

        handler.dispatch(FileModifiedEvent(str(src)))
        handler.join_transfers()

        assert (dst_root / "new" / "dir" / "b.txt").read_bytes() == b"nested"

    def test_excluded_path_not_transferred(self, src_root, dst_root, make_config, recorder):
        src = write_file(src_root / "image.png", b"png")
        calls = []
        handler = MirrorHandler(
            make_config(include=("report",)),
            logger=recorder,
            transfer=lambda *a, **kw: calls.append(a),
        )

        assert handler.handle_change(src) is None
        handler.dispatch(FileCreatedEvent(str(src)))
        handler.join_transfers()

        assert calls == []
        assert list(dst_root.iterdir()) == []

    def test_directory_scoped_include(self, src_root, dst_root, make_config, recorder):
        src = write_file(src_root / "photos" / "img.png", b"png")
        handler = MirrorHandler(make_config(include=("photos",)), logger=recorder)

        handler.dispatch(FileCreatedEvent(str(src)))
        handler.join_transfers()

        assert (dst_root / "photos" / "img.png").exists()

    @pytest.mark.parametrize("pattern", ["photos/", "./photos", "photos/../photos"])
    def test_folder_include_spelled_as_path(self, src_root, dst_root, make_config, recorder, pattern):
        """Files in a folder selected by include are mirrored however the folder was written."""
        src = write_file(src_root / "photos" / "img.png", b"png")
        nested = write_file(src_root / "photos" / "2024" / "deep.png", b"deep")
        write_file(src_root / "docs" / "note.txt", b"no")
        cfg = make_config(include=(pattern,))
        handler = MirrorHandler(cfg, logger=recorder)

        assert ChangeWatcher(cfg, logger=recorder).watch_roots() == [src_root / "photos"]
        assert handler.handle_change(src) is not None
        assert handler.handle_change(nested) is not None
        assert handler.handle_change(src_root / "docs" / "note.txt") is None
        handler.join_transfers()

        assert (dst_root / "photos" / "img.png").read_bytes() == b"png"
        assert (dst_root / "photos" / "2024" / "deep.png").read_bytes() == b"deep"
        assert not (dst_root / "docs").exists()

    def test_destination_locks_released_after_copies(self, src_root, make_config, recorder):
        handler = MirrorHandler(make_config(), logger=recorder)
        for i in range(5):
            src = write_file(src_root / f"f{i}.txt", b"x")
            handler.dispatch(FileCreatedEvent(str(src)))
            handler.dispatch(FileModifiedEvent(str(src)))

        handler.join_transfers()

        assert handler._locks == {}

    def test_same_destination_copies_serialised(self, src_root, make_config, recorder):
        lock = threading.Lock()
        active, peak = [0], [0]

        def slow(src, dst, **kwargs):
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            time.sleep(0.05)
            with lock:
                active[0] -= 1

        handler = MirrorHandler(make_config(), logger=recorder, transfer=slow)
        src = write_file(src_root / "same.txt")
        for _ in range(3):
            handler.handle_change(src)
        handler.join_transfers()

        assert peak[0] == 1
        assert handler._locks == {}

    def test_directory_events_ignored(self, src_root, dst_root, make_config, recorder):
        (src_root / "later").mkdir()
        handler = MirrorHandler(make_config(), logger=recorder)

        handler.dispatch(DirCreatedEvent(str(src_root / "later")))
        handler.join_transfers()

        assert not (dst_root / "later").exists()

    def test_rename_into_place_copies_new_name(self, src_root, dst_root, make_config, recorder):
        final = write_file(src_root / "doc.txt", b"saved")
        handler = MirrorHandler(make_config(), logger=recorder)

        handler.dispatch(FileMovedEvent(str(src_root / "doc.txt.tmp"), str(final)))
        handler.join_transfers()

        assert (dst_root / "doc.txt").read_bytes() == b"saved"
        assert not (dst_root / "doc.txt.tmp").exists()

    def test_path_outside_source_ignored(self, tmp_path, make_config, recorder):
        outside = write_file(tmp_path / "elsewhere.txt")
        handler = MirrorHandler(make_config(), logger=recorder)

        assert handler.handle_change(outside) is None

    def test_transfer_error_logged(self, src_root, dst_root, make_config, recorder):
        handler = MirrorHandler(make_config(), logger=recorder)

        handler.dispatch(FileCreatedEvent(str(src_root / "vanished.txt")))
        handler.join_transfers()

        errors = recorder.recorder.messages(level=40)
        assert len(errors) == 1 and "vanished.txt" in errors[0]

    def test_handler_errors_do_not_escape(self, src_root, make_config, recorder, monkeypatch):
        handler = MirrorHandler(make_config(), logger=recorder)

        def boom(path):
            raise RuntimeError("bad event")

        monkeypatch.setattr(handler, "handle_change", boom)
        handler.dispatch(FileCreatedEvent(str(src_root / "a.txt")))

        assert "bad event" in recorder.recorder.messages(level=40)[0]

    def test_watch_path_not_slot_limited(self, src_root, make_config, recorder):
        """Every event starts its own copy right away, whatever max_transfers says."""
        gate = threading.Event()
        running = []
        lock = threading.Lock()

        def blocking(src, dst, **kwargs):
            with lock:
                running.append(src.name)
            gate.wait(5)

        handler = MirrorHandler(make_config(max_transfers=1), logger=recorder, transfer=blocking)
        for i in range(3):
            handler.handle_change(write_file(src_root / f"f{i}.txt"))

        assert _wait_for(lambda: len(running) == 3, timeout=5)
        gate.set()
        handler.join_transfers()


class TestChangeWatcher:
    def test_watch_dirs_cover_whole_tree(self, src_root, make_config, recorder):
        (src_root / "a" / "b").mkdir(parents=True)
        (src_root / "c").mkdir()

        dirs = ChangeWatcher(make_config(), logger=recorder).watch_dirs()

        assert dirs == [src_root, src_root / "a", src_root / "a" / "b", src_root / "c"]

    def test_include_naming_a_folder_narrows_subscription(self, src_root, make_config, recorder):
        (src_root / "photos" / "2024").mkdir(parents=True)
        (src_root / "docs").mkdir()

        dirs = ChangeWatcher(make_config(include=("photos", "*.jpg")), logger=recorder).watch_dirs()

        assert dirs == [src_root / "photos", src_root / "photos" / "2024"]

    def test_name_only_includes_watch_everything(self, src_root, make_config, recorder):
        (src_root / "docs").mkdir()

        dirs = ChangeWatcher(make_config(include=("report",)), logger=recorder).watch_dirs()

        assert dirs == [src_root, src_root / "docs"]

    def test_include_escaping_source_is_ignored(self, src_root, make_config, recorder):
        dirs = ChangeWatcher(make_config(include=("..",)), logger=recorder).watch_dirs()

        assert dirs == [src_root]

    def test_subscription_failure_is_setup_error(self, make_config, recorder):
        class BrokenObserver:
            def schedule(self, *args, **kwargs):
                raise OSError("inotify watch limit reached")

        watcher = ChangeWatcher(make_config(), logger=recorder, observer_factory=BrokenObserver)
        with pytest.raises(SetupError):
            watcher.start()

    def test_missing_source_is_setup_error(self, tmp_path, make_config, recorder):
        watcher = ChangeWatcher(make_config(source_root=tmp_path / "gone"), logger=recorder)
        with pytest.raises(SetupError):
            watcher.watch_dirs()

    def test_run_honours_stop_event(self, make_config, recorder):
        stop = threading.Event()
        watcher = ChangeWatcher(make_config(), logger=recorder)
        t = threading.Thread(target=watcher.run, args=(stop,))
        t.start()
        time.sleep(0.2)

        stop.set()
        t.join(10)

        assert not t.is_alive()
        assert watcher.observer is None

    def test_live_change_is_mirrored(self, src_root, dst_root, make_config, recorder):
        (src_root / "sub").mkdir()
        stop = threading.Event()
        watcher = ChangeWatcher(make_config(), logger=recorder)
        t = threading.Thread(target=watcher.run, args=(stop,))
        t.start()
        try:
            assert _wait_for(lambda: watcher.observer is not None, timeout=5)
            time.sleep(0.3)
            write_file(src_root / "sub" / "live.txt", b"live data")
            assert _wait_for(lambda: (dst_root / "sub" / "live.txt").exists()
                             and (dst_root / "sub" / "live.txt").read_bytes() == b"live data")
        finally:
            stop.set()
            t.join(10)
