"""Core data types shared across branchvault components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional


class Branch(str, Enum):
    """Release channels a snapshot can track (closed set)."""

    MAIN = "main-branch"
    BETA = "beta-branch"
    ALTERNATE = "alternate-branch"
    ALTERNATE_BETA = "alternate-beta-branch"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def ordered(cls) -> list["Branch"]:
        """Return branches in canonical order."""
        return [cls.MAIN, cls.BETA, cls.ALTERNATE, cls.ALTERNATE_BETA]

    @classmethod
    def parse(cls, value: str) -> "Branch":
        """Parse a branch id, accepting the short form (``beta``) too.

        Raises:
            ValueError: If value names no known branch
        """
        text = value.strip().lower()
        for branch in cls:
            if text in (branch.value, branch.value.removesuffix("-branch")):
                return branch
        raise ValueError(f"Unknown branch: {value!r}")


_DISPLAY_NAMES = {
    Branch.MAIN: "Main Branch",
    Branch.BETA: "Beta Branch",
    Branch.ALTERNATE: "Alternate Branch",
    Branch.ALTERNATE_BETA: "Alternate Beta Branch",
}


class BranchStatus(str, Enum):
    """Install state of a managed branch."""

    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"  # Steam likely has a newer build
    NOT_INSTALLED = "not_installed"  # executable missing from the snapshot
    ERROR = "error"  # evaluation failed

    @property
    def description(self) -> str:
        return _STATUS_DESCRIPTIONS[self]


_STATUS_DESCRIPTIONS = {
    BranchStatus.UP_TO_DATE: "Branch is up to date with Steam",
    BranchStatus.UPDATE_AVAILABLE: "Steam has a newer version available",
    BranchStatus.NOT_INSTALLED: "Branch is not installed locally",
    BranchStatus.ERROR: "Error checking branch status",
}


@dataclass(frozen=True)
class InstalledApp:
    """An application found in a Steam library."""

    app_id: str
    name: str
    install_path: Path
    library_root: Path


@dataclass
class BranchRecord:
    """Computed view of one branch snapshot. Never persisted."""

    branch: Branch
    folder_path: Path
    executable_path: Path
    status: BranchStatus = BranchStatus.NOT_INSTALLED
    local_build_id: str = ""
    remote_build_id: str = ""
    file_count: int = 0
    directory_size: int = 0
    last_modified: Optional[datetime] = None
    is_current_remote_branch: bool = False

    @property
    def display_name(self) -> str:
        return self.branch.display_name

    @property
    def is_installed(self) -> bool:
        return self.folder_path.is_dir() and self.executable_path.is_file()

    @property
    def formatted_size(self) -> str:
        return format_size(self.directory_size)

    @property
    def formatted_file_count(self) -> str:
        return f"{self.file_count:,}" if self.file_count > 0 else "---"

    @property
    def formatted_last_modified(self) -> str:
        return self.last_modified.strftime("%m/%d") if self.last_modified else "---"


def format_size(num_bytes: int) -> str:
    """Format a byte count as B/KB/MB/GB/TB ("---" for zero)."""
    if num_bytes <= 0:
        return "---"
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(num_bytes)
    order = 0
    while size >= 1024 and order < len(units) - 1:
        order += 1
        size /= 1024
    text = f"{size:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[order]}"


@dataclass(frozen=True)
class CopyFailure:
    """A single file that could not be copied."""

    relative_path: str
    reason: str


@dataclass
class CopyResult:
    """Outcome of a best-effort tree copy."""

    copied_count: int = 0
    failed_count: int = 0
    total_files: int = 0
    failures: List[CopyFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_count == 0


@dataclass(frozen=True)
class LaunchCommand:
    """User-defined way to start a branch (a launcher, a mod loader, ...).

    Persisted as ``path|workingDir|arguments|useShell`` so registries written
    by the desktop tool keep working.
    """

    path: str
    working_dir: str = ""
    arguments: str = ""
    use_shell: bool = True

    @classmethod
    def parse(cls, text: str) -> "LaunchCommand":
        """Parse the stored form; a value without separators is a bare path.

        Raises:
            ValueError: If the path is empty or useShell is not a boolean
        """
        parts = text.split("|")
        path = parts[0].strip()
        if not path:
            raise ValueError("launch command has no path")
        use_shell = True
        if len(parts) > 3 and parts[3].strip():
            flag = parts[3].strip().lower()
            if flag not in ("true", "false"):
                raise ValueError(f"invalid useShell value: {parts[3]!r}")
            use_shell = flag == "true"
        return cls(
            path=path,
            working_dir=parts[1].strip() if len(parts) > 1 else "",
            arguments=parts[2].strip() if len(parts) > 2 else "",
            use_shell=use_shell,
        )

    def format(self) -> str:
        """Stored form of this command.

        Raises:
            ValueError: If a field contains the ``|`` separator
        """
        fields = (self.path, self.working_dir, self.arguments)
        if any("|" in value for value in fields):
            raise ValueError("launch command fields must not contain '|'")
        return "|".join((*fields, "True" if self.use_shell else "False"))
