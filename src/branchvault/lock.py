from __future__ import annotations

import getpass
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict

from .constants import WORKFLOW_LOCK_NAME
from .errors import WorkflowBusyError
from .libraries import normalize_root


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class AdvisoryLock:
    """File-based advisory lock with optional TTL and timeout.

    A lock whose owner process is gone is always considered stale. With
    ``ttl > 0`` a lock file older than ttl seconds is stale too.

    Environment variables (optional):
    - BRANCHVAULT_LOCK_TTL: seconds to consider a lock stale (default 0: never by age)
    - BRANCHVAULT_LOCK_POLL: polling interval in seconds while waiting
    """

    def __init__(self, path: Path, *, ttl: int | None = None, timeout: float | None = None, force_break: bool = False):
        self.path = Path(path)
        self.ttl = ttl if ttl is not None else int(os.getenv("BRANCHVAULT_LOCK_TTL", "0"))
        self.poll = float(os.getenv("BRANCHVAULT_LOCK_POLL", "0.1"))
        self.timeout = timeout
        self.force_break = force_break
        self.acquired = False

    def _is_stale(self) -> bool:
        pid = self._pid_of_lock()
        if pid is not None and pid != os.getpid() and not _pid_alive(pid):
            return True
        if self.ttl <= 0:
            return False
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        return (time.time() - mtime) > self.ttl

    def _write_pid(self) -> None:
        """Write lock file with owner metadata for debugging."""
        try:
            user = getpass.getuser()
        except Exception:
            user = "unknown"
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        self.path.write_text(
            f"pid={os.getpid()} time={timestamp} user={user}\n",
            encoding="utf-8"
        )

    def _pid_of_lock(self) -> int | None:
        info = self.get_lock_info()
        if not info or not isinstance(info.get("pid"), int):
            return None
        return info["pid"]

    def get_lock_info(self) -> dict | None:
        """Lock metadata (pid, time, user), or None if there is no lock."""
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        info: dict = {}
        for part in content.split():
            if "=" in part:
                key, value = part.split("=", 1)
                info[key] = value
        if "pid" in info:
            try:
                info["pid"] = int(info["pid"])
            except ValueError:
                pass
        return info or None

    def acquire(self) -> bool:
        start = time.time()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            try:
                # Create exclusively
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                os.close(fd)
                self._write_pid()
                self.acquired = True
                return True
            except FileExistsError:
                if self.force_break or self._is_stale():
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                # If timeout is zero, do not wait
                if self.timeout == 0:
                    return False
                if self.timeout is not None and (time.time() - start) >= self.timeout:
                    return False
                time.sleep(self.poll)

    def release(self) -> None:
        if self.acquired:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            self.acquired = False

    def __enter__(self):
        ok = self.acquire()
        if not ok:
            raise TimeoutError("Failed to acquire lock within timeout")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


# In-process guards keyed by normalized snapshot root
_root_guards: Dict[str, threading.Lock] = {}
_root_guards_lock = threading.Lock()


def _guard_for(root: Path) -> threading.Lock:
    key = normalize_root(root)
    with _root_guards_lock:
        return _root_guards.setdefault(key, threading.Lock())


class SnapshotRootLock:
    """Exclusive access to a snapshot root for one workflow.

    Combines a per-process lock (threads) with an AdvisoryLock file in the
    root itself (other processes). Raises WorkflowBusyError on contention.
    """

    def __init__(self, root: Path, *, timeout: float = 0):
        self.root = Path(root)
        self._guard = _guard_for(self.root)
        self._file_lock = AdvisoryLock(self.root / WORKFLOW_LOCK_NAME, timeout=timeout)
        self._held = False

    def acquire(self) -> None:
        if not self._guard.acquire(blocking=False):
            raise WorkflowBusyError(f"A workflow is already running for {self.root}")
        try:
            if not self._file_lock.acquire():
                info = self._file_lock.get_lock_info() or {}
                raise WorkflowBusyError(
                    f"Snapshot root {self.root} is locked by pid {info.get('pid', '?')}"
                )
        except BaseException:
            self._guard.release()
            raise
        self._held = True

    def release(self) -> None:
        if self._held:
            self._file_lock.release()
            self._guard.release()
            self._held = False

    def __enter__(self) -> "SnapshotRootLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
