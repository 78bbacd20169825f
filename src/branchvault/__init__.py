"""branchvault: standalone per-branch snapshots of a Steam game install."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("branchvault")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .models import Branch, BranchRecord, BranchStatus, CopyResult, InstalledApp  # noqa: F401
from .manifest import ManifestReader  # noqa: F401
from .libraries import LibraryLocator  # noqa: F401
from .catalog import GameCatalog, TargetApp  # noqa: F401
from .registry import BranchConfig, BranchRegistry  # noqa: F401
from .status import BranchStatusEvaluator  # noqa: F401
from .copier import SnapshotCopier  # noqa: F401
from .orchestrator import SwitchOrchestrator, WorkflowObserver, WorkflowResult, WorkflowState  # noqa: F401
from .branches import BranchManager  # noqa: F401

__all__ = [
    "Branch",
    "BranchRecord",
    "BranchStatus",
    "CopyResult",
    "InstalledApp",
    "ManifestReader",
    "LibraryLocator",
    "GameCatalog",
    "TargetApp",
    "BranchConfig",
    "BranchRegistry",
    "BranchStatusEvaluator",
    "SnapshotCopier",
    "SwitchOrchestrator",
    "WorkflowObserver",
    "WorkflowResult",
    "WorkflowState",
    "BranchManager",
    "__version__",
]
