"""Persisted branch configuration.

The registry is one JSON document, always rewritten as a whole. It records
where the live install and the snapshots are, which branches are managed and
the build id each snapshot was copied from.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .constants import SCHEMA_VERSION
from .models import Branch
from .observability import get_logger


_logger = get_logger("registry")

# Field names written by the 1.0 desktop tool
_LEGACY_KEYS = {
    "steamLibraryPath": "sourceLibraryPath",
    "gameInstallPath": "sourceInstallPath",
    "managedEnvironmentPath": "snapshotRootPath",
    "configVersion": "schemaVersion",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BranchConfig(BaseModel):
    """Root registry document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source_library_path: str = ""
    source_install_path: str = ""
    snapshot_root_path: str = ""
    selected_branches: List[Branch] = Field(default_factory=list)
    branch_build_ids: Dict[Branch, str] = Field(default_factory=dict)
    # Stored as "path|workingDir|arguments|useShell", see models.LaunchCommand
    custom_launch_commands: Dict[Branch, str] = Field(default_factory=dict)
    installed_branch: Optional[Branch] = None
    last_updated: datetime = Field(default_factory=_utcnow)
    schema_version: str = SCHEMA_VERSION

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            for old, new in _LEGACY_KEYS.items():
                if old in data and new not in data:
                    data[new] = data.pop(old)
        return data

    @field_validator("selected_branches")
    @classmethod
    def _unique_branches(cls, v: List[Branch]) -> List[Branch]:
        if len(set(v)) != len(v):
            raise ValueError("selected branches must not repeat")
        return v

    @field_validator("last_updated")
    @classmethod
    def _aware_timestamp(cls, v: datetime) -> datetime:
        # Naive values came from local wall-clock time
        return v.astimezone(timezone.utc) if v.tzinfo is None else v

    @model_validator(mode="after")
    def _per_branch_maps_follow_selection(self) -> "BranchConfig":
        for attr, label in (("branch_build_ids", "build ids"), ("custom_launch_commands", "launch commands")):
            values = getattr(self, attr)
            stray = [b for b in values if b not in self.selected_branches]
            if stray:
                _logger.warning(
                    "Dropping %s for unselected branches: %s",
                    label,
                    ", ".join(b.value for b in stray),
                )
                setattr(self, attr, {b: v for b, v in values.items() if b in self.selected_branches})
        return self

    @classmethod
    def default(cls) -> "BranchConfig":
        """Create config with all defaults."""
        return cls()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def snapshot_root(self) -> Optional[Path]:
        return Path(self.snapshot_root_path) if self.snapshot_root_path else None

    @property
    def source_install(self) -> Optional[Path]:
        return Path(self.source_install_path) if self.source_install_path else None

    def branch_folder(self, branch: Branch) -> Path:
        if not self.snapshot_root_path:
            raise ValueError("snapshot root path is not configured")
        return Path(self.snapshot_root_path) / branch.value

    # ------------------------------------------------------------------
    # Mutators (each refreshes last_updated)
    # ------------------------------------------------------------------

    def touch(self) -> None:
        self.last_updated = _utcnow()

    def update_paths(
        self,
        source_library_path: str | os.PathLike[str],
        source_install_path: str | os.PathLike[str],
        snapshot_root_path: str | os.PathLike[str],
    ) -> None:
        self.source_library_path = os.fspath(source_library_path)
        self.source_install_path = os.fspath(source_install_path)
        self.snapshot_root_path = os.fspath(snapshot_root_path)
        self.touch()

    def select_branches(self, branches: Iterable[Branch]) -> None:
        """Replace the selection; build ids and launch commands of deselected branches are dropped."""
        self.selected_branches = list(dict.fromkeys(Branch(b) for b in branches))
        self.branch_build_ids = {
            b: build for b, build in self.branch_build_ids.items() if b in self.selected_branches
        }
        self.custom_launch_commands = {
            b: cmd for b, cmd in self.custom_launch_commands.items() if b in self.selected_branches
        }
        self.touch()

    def build_id_for(self, branch: Branch) -> str:
        return self.branch_build_ids.get(branch, "")

    def set_build_id(self, branch: Branch, build_id: str) -> None:
        """Record the build a snapshot was copied from.

        Raises:
            ValueError: If branch is not selected
        """
        if branch not in self.selected_branches:
            raise ValueError(f"{branch.value} is not a selected branch")
        self.branch_build_ids[branch] = build_id
        self.touch()

    def custom_launch_command(self, branch: Branch) -> str:
        return self.custom_launch_commands.get(branch, "")

    def set_custom_launch_command(self, branch: Branch, command: str) -> None:
        """Store a branch's launch command; a blank command removes it.

        Raises:
            ValueError: If branch is not selected
        """
        if not command.strip():
            self.custom_launch_commands.pop(branch, None)
        elif branch not in self.selected_branches:
            raise ValueError(f"{branch.value} is not a selected branch")
        else:
            self.custom_launch_commands[branch] = command
        self.touch()

    def remove_branch(self, branch: Branch) -> None:
        if branch in self.selected_branches:
            self.selected_branches.remove(branch)
        self.branch_build_ids.pop(branch, None)
        self.custom_launch_commands.pop(branch, None)
        if self.installed_branch == branch:
            self.installed_branch = None
        self.touch()


class BranchRegistry:
    """Load/save of the BranchConfig document at a caller-supplied path."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.logger = logger or _logger

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> BranchConfig:
        """Read the registry; missing or unparsable files give the default config."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self.logger.info("Configuration file not found, using defaults: %s", self.path)
            return BranchConfig.default()
        except OSError as e:
            self.logger.warning("Cannot read configuration %s: %s", self.path, e)
            return BranchConfig.default()

        try:
            config = BranchConfig.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as e:
            self.logger.warning("Invalid configuration in %s, using defaults: %s", self.path, e)
            return BranchConfig.default()

        self.logger.info("Configuration loaded from %s", self.path)
        return config

    def save(self, config: BranchConfig) -> None:
        """Write the whole document atomically (temp + rename).

        Refreshes ``config.last_updated`` first. Write errors propagate.
        """
        config.touch()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".registry_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(config.model_dump_json(by_alias=True, indent=2))
            os.replace(temp_path, self.path)
        except Exception:
            # Clean up temp file on failure
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
        self.logger.info("Configuration saved to %s", self.path)

    def delete(self) -> bool:
        """Remove the registry file. Returns False if it did not exist."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        self.logger.info("Configuration deleted: %s", self.path)
        return True
