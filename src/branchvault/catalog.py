"""Installed application catalog for Steam libraries."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .constants import (
    COMMON_SUBFOLDER,
    DEFAULT_APP_ID,
    DEFAULT_APP_NAMES,
    DEFAULT_EXECUTABLE_NAME,
    MANIFEST_GLOB,
)
from .models import InstalledApp
from .observability import get_logger


_LINE = re.compile(r'^"([^"]+)"\s+"([^"]*)"')
_KEYS = ("appid", "name", "installdir")


@dataclass(frozen=True)
class TargetApp:
    """The application whose branches are managed."""

    app_id: str = DEFAULT_APP_ID
    names: Tuple[str, ...] = field(default=DEFAULT_APP_NAMES)
    executable_name: str = DEFAULT_EXECUTABLE_NAME


def scan_manifest_keys(text: str) -> Dict[str, str]:
    """Values of appid/name/installdir; the first occurrence of each wins."""
    found: Dict[str, str] = {}
    for line in text.splitlines():
        match = _LINE.match(line.strip())
        if not match:
            continue
        key = match.group(1).lower()
        if key in _KEYS and key not in found:
            found[key] = match.group(2)
    return found


def parse_app_manifest(path: Path, library_root: Path) -> Optional[InstalledApp]:
    """Build an InstalledApp from an appmanifest file.

    Returns None when appid or name is missing. Read errors propagate so the
    caller can log them per manifest.
    """
    keys = scan_manifest_keys(path.read_text(encoding="utf-8", errors="ignore"))
    app_id = keys.get("appid", "").strip()
    name = keys.get("name", "").strip()
    if not app_id or not name:
        return None
    return InstalledApp(
        app_id=app_id,
        name=name,
        install_path=library_root / COMMON_SUBFOLDER / keys.get("installdir", ""),
        library_root=library_root,
    )


class GameCatalog:
    def __init__(self, target: Optional[TargetApp] = None, logger: Optional[logging.Logger] = None):
        self.target = target or TargetApp()
        self.logger = logger or get_logger("catalog")

    def list_apps(self, root: Path) -> List[InstalledApp]:
        apps: List[InstalledApp] = []
        if not root.is_dir():
            self.logger.warning("Library path does not exist: %s", root)
            return apps

        for manifest in sorted(root.glob(MANIFEST_GLOB)):
            try:
                app = parse_app_manifest(manifest, root)
            except OSError as e:
                self.logger.warning("Error parsing manifest file %s: %s", manifest, e)
                continue
            if app is None:
                self.logger.warning("Skipping malformed manifest %s", manifest)
                continue
            apps.append(app)

        self.logger.info("Found %d games in library: %s", len(apps), root)
        return apps

    def is_target_app(self, app: InstalledApp) -> bool:
        if app.app_id == self.target.app_id:
            return True
        name = app.name.lower()
        return any(alias.lower() in name for alias in self.target.names)

    def find_target_across_roots(self, roots: Iterable[Path]) -> Optional[InstalledApp]:
        for root in roots:
            for app in self.list_apps(root):
                if self.is_target_app(app):
                    self.logger.info("Found %s in library: %s", app.name, root)
                    return app
        self.logger.warning("Target app %s not found in any Steam library", self.target.app_id)
        return None
