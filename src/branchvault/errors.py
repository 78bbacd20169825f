"""Exception types raised by branchvault.

Soft failures (missing manifests, unparsable files, per-file copy errors) are
logged and reported as values. Only the failures below reach the caller.
"""

from __future__ import annotations


class BranchvaultError(Exception):
    """Base class for branchvault errors."""

    pass


class ConfigError(BranchvaultError):
    """Configuration loading or validation error."""

    pass


class SnapshotRootError(BranchvaultError):
    """The top-level snapshot directory could not be created."""

    def __init__(self, path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Cannot create snapshot root {path}: {cause}")


class BranchCopyError(BranchvaultError):
    """Copying a whole branch failed (disk full, permission denied at the root...)."""

    def __init__(self, branch: str, cause: Exception):
        self.branch = branch
        self.cause = cause
        super().__init__(f"Copy of {branch} failed: {cause}")


class WorkflowBusyError(BranchvaultError):
    """Another workflow already holds the snapshot root."""

    pass
