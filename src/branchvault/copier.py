"""Full-tree snapshot copies and related filesystem helpers."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .models import CopyFailure, CopyResult
from .observability import get_logger


ProgressCallback = Callable[[int, int], None]
CopyFunction = Callable[[Path, Path], object]


def progress_percent(copied: int, total: int) -> int:
    """floor(copied / total * 100); an empty tree counts as done."""
    if total <= 0:
        return 100
    return (copied * 100) // total


def list_files(root: Path) -> List[Path]:
    """Every file under root, recursively, in a stable order."""
    files: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            files.append(Path(dirpath) / name)
    return files


def directory_stats(path: Path) -> Tuple[int, int]:
    """(total bytes, file count) for a directory tree; (0, 0) if missing."""
    size = 0
    count = 0
    for file in list_files(path):
        try:
            size += file.stat().st_size
        except OSError:
            continue
        count += 1
    return size, count


def _clear_readonly(func, path, exc_info) -> None:
    # shutil.rmtree onerror hook: retry once after making the entry writable
    os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
    func(path)


def remove_tree(path: Path) -> bool:
    """Delete a directory tree, clearing read-only bits as needed.

    Returns True when the tree is gone (including when it never existed).
    Errors propagate.
    """
    if not path.exists():
        return True
    shutil.rmtree(path, onerror=_clear_readonly)
    return True


class SnapshotCopier:
    """Best-effort copy of a whole tree.

    Per-file failures are recorded and skipped. Only failures at the roots
    (missing source, destination that cannot be created) raise.
    """

    def __init__(
        self,
        copy_file: CopyFunction = shutil.copy2,
        logger: Optional[logging.Logger] = None,
    ):
        self.copy_file = copy_file
        self.logger = logger or get_logger("copier")

    def _notify(self, on_progress: Optional[ProgressCallback], copied: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            on_progress(copied, total)
        except Exception:
            self.logger.warning("Progress observer failed", exc_info=True)

    def copy_tree(
        self,
        source_root: Path,
        dest_root: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CopyResult:
        source_root = Path(source_root)
        dest_root = Path(dest_root)
        if not source_root.is_dir():
            raise FileNotFoundError(f"Source directory does not exist: {source_root}")
        dest_root.mkdir(parents=True, exist_ok=True)

        files = list_files(source_root)
        result = CopyResult(total_files=len(files))
        self.logger.info("Copying %d files from %s to %s", len(files), source_root, dest_root)

        for source in files:
            relative = source.relative_to(source_root)
            target = dest_root / relative
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                self.copy_file(source, target)
            except OSError as e:
                result.failed_count += 1
                result.failures.append(CopyFailure(relative.as_posix(), str(e)))
                self.logger.warning("Error copying %s: %s", relative.as_posix(), e)
            else:
                result.copied_count += 1
            # reported after every file, failed ones included
            self._notify(on_progress, result.copied_count, result.total_files)

        self.logger.info(
            "Copy to %s completed. %d/%d files copied, %d failed",
            dest_root,
            result.copied_count,
            result.total_files,
            result.failed_count,
        )
        return result
