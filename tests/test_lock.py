from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from branchvault.errors import WorkflowBusyError
from branchvault.lock import AdvisoryLock, SnapshotRootLock


def test_lock_acquire_release(tmp_path: Path):
    p = tmp_path / ".t.lock"
    with AdvisoryLock(p, timeout=1):
        assert p.exists()
        info = AdvisoryLock(p).get_lock_info()
        assert info["pid"] == os.getpid()
    assert not p.exists()


def test_lock_timeout_then_force_break(tmp_path: Path):
    p = tmp_path / ".t.lock"
    l1 = AdvisoryLock(p, timeout=0)
    assert l1.acquire() is True
    try:
        l2 = AdvisoryLock(p, timeout=0.2)
        assert l2.acquire() is False
        l3 = AdvisoryLock(p, timeout=0, force_break=True)
        assert l3.acquire() is True
        l3.release()
    finally:
        l1.release()


def test_lock_of_dead_process_is_stale(tmp_path: Path, monkeypatch):
    p = tmp_path / ".t.lock"
    p.write_text("pid=999999 time=2024-01-01T00:00:00Z user=someone\n", encoding="utf-8")
    monkeypatch.setattr("branchvault.lock._pid_alive", lambda pid: False)

    lock = AdvisoryLock(p, timeout=0)
    assert lock.acquire() is True
    lock.release()


def test_live_lock_is_not_stale_without_ttl(tmp_path: Path, monkeypatch):
    p = tmp_path / ".t.lock"
    p.write_text("pid=999999 time=2024-01-01T00:00:00Z user=someone\n", encoding="utf-8")
    monkeypatch.setattr("branchvault.lock._pid_alive", lambda pid: True)
    os.utime(p, (0, 0))

    assert AdvisoryLock(p, timeout=0).acquire() is False


def test_ttl_expires_old_lock(tmp_path: Path, monkeypatch):
    p = tmp_path / ".t.lock"
    p.write_text("pid=999999\n", encoding="utf-8")
    monkeypatch.setattr("branchvault.lock._pid_alive", lambda pid: True)
    os.utime(p, (0, 0))

    lock = AdvisoryLock(p, timeout=0, ttl=60)
    assert lock.acquire() is True
    lock.release()


class TestSnapshotRootLock:
    def test_same_root_different_spelling_is_busy(self, tmp_path: Path):
        root = tmp_path / "snap"
        root.mkdir()
        with SnapshotRootLock(root):
            with pytest.raises(WorkflowBusyError):
                SnapshotRootLock(Path(f"{root}/")).acquire()

    def test_other_thread_is_busy(self, tmp_path: Path):
        root = tmp_path / "snap"
        root.mkdir()
        errors = []

        def contender():
            try:
                SnapshotRootLock(root).acquire()
            except WorkflowBusyError as e:
                errors.append(e)

        with SnapshotRootLock(root):
            t = threading.Thread(target=contender)
            t.start()
            t.join()

        assert len(errors) == 1

    def test_file_lock_from_other_process(self, tmp_path: Path, monkeypatch):
        root = tmp_path / "snap"
        root.mkdir()
        (root / ".branchvault.lock").write_text("pid=999999\n", encoding="utf-8")
        monkeypatch.setattr("branchvault.lock._pid_alive", lambda pid: True)

        with pytest.raises(WorkflowBusyError, match="999999"):
            SnapshotRootLock(root).acquire()
        # In-process guard released after the failure
        (root / ".branchvault.lock").unlink()
        with SnapshotRootLock(root):
            assert (root / ".branchvault.lock").exists()

    def test_different_roots_independent(self, tmp_path: Path):
        with SnapshotRootLock(tmp_path / "a"):
            with SnapshotRootLock(tmp_path / "b"):
                pass
