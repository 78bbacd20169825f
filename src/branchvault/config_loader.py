"""Settings loading and merging for branchvault.

Handles TOML loading, config discovery, deep merging, and environment overlay.
"""

from __future__ import annotations

import os
import threading
import tomllib
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .config_schema import BranchvaultConfig
from .errors import ConfigError


# Config file name
CONFIG_FILENAME = "config.toml"

# Directory names
USER_CONFIG_DIR = ".branchvault"
PROJECT_CONFIG_DIR = ".branchvault"

# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, tuple[list[str], str]] = {
    # Workflow
    "BRANCHVAULT_POLL_INTERVAL": (["workflow"], "poll_interval"),
    "BRANCHVAULT_SWITCH_TIMEOUT": (["workflow"], "timeout"),
    # Target app
    "BRANCHVAULT_APP_ID": (["target"], "app_id"),
    "BRANCHVAULT_APP_NAMES": (["target"], "names"),
    "BRANCHVAULT_EXECUTABLE": (["target"], "executable"),
    # Steam
    "BRANCHVAULT_STEAM_ROOT": (["steam"], "store_root"),
    "BRANCHVAULT_SYSTEM_VOLUME": (["steam"], "system_volume"),
    # Paths
    "BRANCHVAULT_REGISTRY": (["paths"], "registry_path"),
    # Logging
    "BRANCHVAULT_LOG_LEVEL": (["logging"], "level"),
    "BRANCHVAULT_LOG_DIR": (["logging"], "dir"),
    "BRANCHVAULT_LOG_MAX_BYTES": (["logging"], "max_bytes"),
    "BRANCHVAULT_LOG_BACKUP_COUNT": (["logging"], "backup_count"),
    "BRANCHVAULT_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}

# Values given as comma-separated lists in the environment
_LIST_KEYS = {"names"}


def _get_user_config_dir() -> Path:
    """Get user-level config directory (~/.branchvault/)."""
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Get project-level config directory (.branchvault/).

    Searches upward from project_path to find .branchvault/ directory.
    """
    if project_path is None:
        project_path = Path.cwd()

    if not project_path.is_absolute():
        project_path = project_path.resolve()

    current = project_path
    while current != current.parent:
        config_dir = current / PROJECT_CONFIG_DIR
        if config_dir.is_dir() and current != Path.home():
            return config_dir
        current = current.parent

    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    Lists are replaced, not merged.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _env_to_config_key(env_var: str) -> tuple[list[str], str]:
    """Map environment variable to config path.

    Examples:
        BRANCHVAULT_POLL_INTERVAL -> (["workflow"], "poll_interval")
        BRANCHVAULT_LOG_DIR -> (["logging"], "dir")
        BRANCHVAULT_UNKNOWN -> ([], "BRANCHVAULT_UNKNOWN")
    """
    return ENV_MAPPING.get(env_var, ([], env_var))


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to config dict.

    Nested sections are copied, so the input dict is left untouched.
    """
    result = config_dict.copy()

    for env_var in ENV_MAPPING:
        value = os.getenv(env_var)
        if value is None:
            continue

        section_path, key_name = _env_to_config_key(env_var)
        if not section_path:
            continue

        current = result
        for section in section_path:
            current[section] = dict(current.get(section) or {})
            current = current[section]

        # Type conversion happens during Pydantic validation
        if key_name in _LIST_KEYS:
            current[key_name] = [part.strip() for part in value.split(",") if part.strip()]
        else:
            current[key_name] = value

    return result


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
) -> BranchvaultConfig:
    """Load and merge branchvault settings.

    Discovery order (later sources override earlier):
    1. Built-in defaults
    2. User config (~/.branchvault/config.toml)
    3. Project config (.branchvault/config.toml)
    4. Environment variables (unless skip_env=True)

    Raises:
        ConfigError: If the project config or the merged result is invalid
    """
    config_dict: Dict[str, Any] = {}

    # 1. User config
    user_config_path = _get_user_config_dir() / CONFIG_FILENAME
    if user_config_path.exists():
        try:
            user_config = _load_toml(user_config_path)
            config_dict = _deep_merge(config_dict, user_config)
        except ConfigError as e:
            # User config is optional, warn but continue
            warnings.warn(
                f"Skipping invalid user config at {user_config_path}: {e}",
                UserWarning,
            )

    # 2. Project config
    project_config_dir = _get_project_config_dir(project_path)
    if project_config_dir:
        project_config_path = project_config_dir / CONFIG_FILENAME
        if project_config_path.exists():
            try:
                project_config = _load_toml(project_config_path)
                config_dict = _deep_merge(config_dict, project_config)
            except ConfigError as e:
                raise ConfigError(f"Invalid project config: {e}")

    # 3. Environment overlay
    if not skip_env:
        config_dict = _apply_env_overlay(config_dict)

    # 4. Validate and create config object
    try:
        return BranchvaultConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Paths of the user and project config files (project is None when absent)."""
    project_dir = _get_project_config_dir(project_path)
    return {
        "user_config": _get_user_config_dir() / CONFIG_FILENAME,
        "project_config": project_dir / CONFIG_FILENAME if project_dir else None,
    }


# Global cached config (thread-safe)
_cached_config: Optional[BranchvaultConfig] = None
_cached_project_path: Optional[Path] = None
_config_lock = threading.Lock()


def get_config(project_path: Optional[Path] = None, force_reload: bool = False) -> BranchvaultConfig:
    """Get cached config, loading if necessary.

    Thread-safe: Uses a lock to prevent race conditions when multiple
    threads access the config cache concurrently.
    """
    global _cached_config, _cached_project_path

    # Normalize path for comparison (treat empty Path as None)
    if project_path and str(project_path):
        normalized_path = project_path.resolve()
    else:
        normalized_path = None

    with _config_lock:
        if (
            force_reload
            or _cached_config is None
            or _cached_project_path != normalized_path
        ):
            _cached_config = load_config(project_path)
            _cached_project_path = normalized_path

        return _cached_config


def clear_config_cache() -> None:
    """Clear cached config (thread-safe)."""
    global _cached_config, _cached_project_path
    with _config_lock:
        _cached_config = None
        _cached_project_path = None
