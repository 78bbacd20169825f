"""Resolution of the on-disk locations branchvault reads and writes.

Core components receive ready-to-use paths; only the CLI (or another host)
calls into this module.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from .config_schema import BranchvaultConfig
from .constants import REGISTRY_FILENAME


DEFAULT_REGISTRY_DIR = Path.home() / ".branchvault" / "config"


def _expand_path(value: str) -> Path:
    """Expand environment variables and user home directory in path."""
    return Path(os.path.expanduser(os.path.expandvars(value)))


def _resolve_path(path: Path) -> Path:
    """Safely resolve path, handling errors gracefully."""
    try:
        return path.resolve(strict=False)
    except (OSError, RuntimeError, ValueError):
        return path


def resolve_registry_path(
    settings: Optional[BranchvaultConfig] = None,
    explicit: Optional[str] = None,
) -> Path:
    """Location of the branch registry JSON document.

    Priority (highest first):
    1. explicit (e.g. a --registry CLI flag)
    2. settings.paths.registry_path (config files / BRANCHVAULT_REGISTRY)
    3. ~/.branchvault/config/dev_environment_config.json

    A directory value gets the default file name appended.
    """
    value = explicit or (settings.paths.registry_path if settings is not None else "")
    if not value:
        return DEFAULT_REGISTRY_DIR / REGISTRY_FILENAME

    path = _resolve_path(_expand_path(value))
    if path.is_dir():
        return path / REGISTRY_FILENAME
    return path


def resolve_snapshot_root(value: str) -> Path:
    """Absolute snapshot root from user input (``~`` and ``$VARS`` expanded)."""
    if not value or not value.strip():
        raise ValueError("snapshot root path is empty")
    return _resolve_path(_expand_path(value.strip()))
