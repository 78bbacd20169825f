"""Settings schema for branchvault.

Defines every option with type, default and validation. These are the
tool's own settings (TOML), not the per-user branch registry document.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import (
    DEFAULT_APP_ID,
    DEFAULT_APP_NAMES,
    DEFAULT_EXECUTABLE_NAME,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SWITCH_TIMEOUT,
)
from .manifest import ManifestReader


class WorkflowConfig(BaseModel):
    """Wait-for-switch timing."""

    poll_interval: float = Field(
        default=DEFAULT_POLL_INTERVAL,
        gt=0,
        description="Seconds between live-branch checks while waiting for a switch",
    )
    timeout: float = Field(
        default=DEFAULT_SWITCH_TIMEOUT,
        ge=0,
        description="Seconds to wait for a branch switch before giving up",
    )

    @model_validator(mode="after")
    def _interval_within_budget(self) -> "WorkflowConfig":
        if self.timeout and self.poll_interval > self.timeout:
            warnings.warn(
                f"poll_interval ({self.poll_interval}s) exceeds timeout ({self.timeout}s); "
                "only the initial check will run",
                UserWarning,
            )
        return self


class TargetConfig(BaseModel):
    """The application whose branches are managed."""

    app_id: str = Field(
        default=DEFAULT_APP_ID,
        description="Steam app id",
    )
    names: List[str] = Field(
        default=list(DEFAULT_APP_NAMES),
        description="Names the app may be listed under (case-insensitive substring match)",
    )
    executable: str = Field(
        default=DEFAULT_EXECUTABLE_NAME,
        description="Executable file name inside an install or snapshot",
    )

    @field_validator("app_id")
    @classmethod
    def validate_app_id(cls, v: str) -> str:
        v = v.strip()
        if not v.isdigit():
            raise ValueError(f"app_id must be numeric, got {v!r}")
        return v


class SteamConfig(BaseModel):
    """Steam installation overrides."""

    store_root: str = Field(
        default="",
        description="Steam installation directory (empty = search default locations)",
    )
    system_volume: str = Field(
        default="",
        description="Volume listed first among library roots (empty = detect)",
    )

    @field_validator("store_root")
    @classmethod
    def validate_store_root(cls, v: str) -> str:
        """Warn if the Steam directory doesn't exist."""
        if v:
            path = Path(v).expanduser()
            if not path.is_dir():
                warnings.warn(
                    f"Steam directory does not exist: {v}",
                    UserWarning,
                )
        return v


class PathsConfig(BaseModel):
    """Where the branch registry lives."""

    registry_path: str = Field(
        default="",
        description="Branch registry JSON file (empty = ~/.branchvault/config/dev_environment_config.json)",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.branchvault/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log path exists but is not a directory (created on use)."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class BranchvaultConfig(BaseModel):
    """Root settings model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )

    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    target: TargetConfig = Field(default_factory=TargetConfig)
    steam: SteamConfig = Field(default_factory=SteamConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "BranchvaultConfig":
        """Create config with all defaults."""
        return cls()

    @property
    def store_root(self) -> Optional[Path]:
        return Path(self.steam.store_root).expanduser() if self.steam.store_root else None

    def manifest_reader(self, logger=None) -> ManifestReader:
        return ManifestReader(app_id=self.target.app_id, logger=logger)
