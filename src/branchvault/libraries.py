"""Steam library discovery.

A library root is a ``steamapps`` directory. Steam keeps a default one under
its install directory and lists extra ones in ``libraryfolders.vdf``.
"""

from __future__ import annotations

import logging
import os
import platform
import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .constants import LIBRARY_FOLDERS_FILE, STORE_SUBFOLDER
from .observability import get_logger


_PATH_LINE = re.compile(r'"path"\s+"([^"]+)"', re.IGNORECASE)
_DRIVE = re.compile(r"^([A-Za-z]):")


def default_store_candidates() -> List[Path]:
    """Usual Steam install locations for the current OS."""
    system = platform.system().lower()
    home = Path.home()
    if system == "windows":
        candidates = [
            Path(os.environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)")) / "Steam",
            Path(os.environ.get("ProgramFiles", r"C:\Program Files")) / "Steam",
        ]
        local = os.environ.get("LOCALAPPDATA")
        if local:
            candidates.append(Path(local) / "Programs" / "Steam")
        return candidates
    if system == "darwin":
        return [home / "Library" / "Application Support" / "Steam"]
    return [
        home / ".steam" / "steam",
        home / ".local" / "share" / "Steam",
    ]


def default_system_volume() -> str:
    if platform.system().lower() == "windows":
        return os.environ.get("SystemDrive", "C:")
    return os.path.abspath(os.sep)


def find_store_root(candidates: Optional[Sequence[Path]] = None) -> Optional[Path]:
    """First existing Steam install directory, or None."""
    for path in candidates if candidates is not None else default_store_candidates():
        if path.is_dir():
            return path
    return None


def parse_library_folders(text: str) -> List[str]:
    """Library paths declared in a libraryfolders.vdf document."""
    values: List[str] = []
    for line in text.splitlines():
        match = _PATH_LINE.search(line)
        if match:
            # VDF escapes backslashes in Windows paths
            values.append(match.group(1).replace("\\\\", "\\"))
    return values


def normalize_root(path: os.PathLike[str] | str) -> str:
    """Identity key for a library root.

    Absolute, forward slashes, no duplicate or trailing separators,
    lowercased. Windows drive paths are handled on any host OS.
    """
    text = os.fspath(path).strip().replace("\\", "/")
    if not _DRIVE.match(text) and not text.startswith("//"):
        text = os.path.abspath(text).replace("\\", "/")
    unc = text.startswith("//")
    text = re.sub(r"/+", "/", text)
    if unc:
        text = "/" + text
    if len(text) > 1:
        text = text.rstrip("/")
    return text.lower()


def _drive_of(path: str) -> Optional[str]:
    match = _DRIVE.match(path.strip())
    return match.group(1).upper() if match else None


def is_on_system_volume(path: str, system_volume: str) -> bool:
    drive = _drive_of(path)
    system_drive = _drive_of(system_volume)
    if drive or system_drive:
        return drive == system_drive
    try:
        return os.stat(path).st_dev == os.stat(system_volume).st_dev
    except OSError:
        return False


def dedupe_roots(paths: Iterable[str]) -> List[str]:
    """Drop repeated roots, keeping the first spelling seen."""
    seen: set[str] = set()
    unique: List[str] = []
    for path in paths:
        key = normalize_root(path)
        if key in seen:
            continue
        seen.add(key)
        unique.append(path)
    return unique


def order_system_volume_first(paths: Sequence[str], system_volume: str) -> List[str]:
    """Stable partition: roots on the system volume come first."""
    return sorted(paths, key=lambda p: 0 if is_on_system_volume(p, system_volume) else 1)


def merge_roots(paths: Iterable[str], system_volume: Optional[str] = None) -> List[str]:
    return order_system_volume_first(
        dedupe_roots(paths),
        system_volume or default_system_volume(),
    )


class LibraryLocator:
    """Finds every Steam library root on this machine."""

    def __init__(
        self,
        store_root: Optional[Path] = None,
        *,
        system_volume: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store_root = store_root
        self.system_volume = system_volume or default_system_volume()
        self.logger = logger or get_logger("libraries")

    def _read_descriptor(self, path: Path) -> List[str]:
        try:
            text = path.read_text(encoding="utf-8", errors="ignore")
        except FileNotFoundError:
            return []
        except OSError as e:
            self.logger.warning("Cannot read %s: %s", path, e)
            return []
        return parse_library_folders(text)

    def discover(self) -> List[Path]:
        store = self.store_root or find_store_root()
        if store is None:
            self.logger.warning("Steam installation not found in common paths")
            return []

        candidates: List[str] = []
        default = store / STORE_SUBFOLDER
        if default.is_dir():
            candidates.append(str(default))

        for value in self._read_descriptor(default / LIBRARY_FOLDERS_FILE):
            library = Path(value) / STORE_SUBFOLDER
            if library.is_dir():
                candidates.append(str(library))
            else:
                self.logger.debug("Skipping missing library %s", library)

        roots = [Path(p) for p in merge_roots(candidates, self.system_volume)]
        self.logger.info("Found %d Steam library paths", len(roots))
        return roots
