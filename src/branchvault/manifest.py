"""Steam app manifest (ACF) parsing.

ACF is a quoted key/value format with brace-nested blocks. It is not JSON:
values may be unquoted numbers and whitespace between tokens is arbitrary.
Nothing in this module raises on bad input; "unknown" is reported as None.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional, Tuple

from .constants import DEFAULT_APP_ID
from .models import Branch
from .observability import get_logger


# BetaKey value -> branch. Anything not listed falls back to main.
BETA_KEY_TABLE = {
    "": Branch.MAIN,
    "main": Branch.MAIN,
    "stable": Branch.MAIN,
    "release": Branch.MAIN,
    "beta": Branch.BETA,
    "alternate": Branch.ALTERNATE,
    "alternate-beta": Branch.ALTERNATE_BETA,
    "alternatebeta": Branch.ALTERNATE_BETA,
}

_USER_CONFIG_PATTERN = re.compile(r'"UserConfig"|\bUserConfig\b', re.IGNORECASE)


def _pair_pattern(key: str) -> re.Pattern[str]:
    # "Key" "value"  |  "Key" 12345
    return re.compile(
        rf'(?:"{key}"|\b{key}\b)\s+(?:"([^"]*)"|([^\s"{{}}]+))',
        re.IGNORECASE,
    )


_BETA_KEY_PATTERN = _pair_pattern("BetaKey")
_BUILD_ID_PATTERN = _pair_pattern("BuildID")


def _match_value(pattern: re.Pattern[str], text: str) -> Optional[str]:
    match = pattern.search(text)
    if not match:
        return None
    value = match.group(1) if match.group(1) is not None else match.group(2)
    return value.strip()


def beta_key_to_branch(beta_key: Optional[str]) -> Branch:
    """Map a Steam BetaKey to a branch (unknown keys are main)."""
    if beta_key is None:
        return Branch.MAIN
    return BETA_KEY_TABLE.get(beta_key.strip().lower(), Branch.MAIN)


def find_block(text: str, start: int) -> Optional[Tuple[int, int]]:
    """Return (open, close) brace offsets of the block starting at or after ``start``.

    Tracks nesting depth so inner blocks do not end the search early. Braces
    inside quoted strings are text, and a backslash escapes the next
    character within quotes. Returns None when there is no opening brace or
    the braces never balance.
    """
    open_at = _skip_to_open_brace(text, start)
    if open_at is None:
        return None
    depth = 0
    in_quote = False
    i = open_at
    while i < len(text):
        ch = text[i]
        if in_quote:
            if ch == "\\":
                i += 1
            elif ch == '"':
                in_quote = False
        elif ch == '"':
            in_quote = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return open_at, i
        i += 1
    return None


def _skip_to_open_brace(text: str, start: int) -> Optional[int]:
    in_quote = False
    i = start
    while i < len(text):
        ch = text[i]
        if in_quote:
            if ch == "\\":
                i += 1
            elif ch == '"':
                in_quote = False
        elif ch == '"':
            in_quote = True
        elif ch == "{":
            return i
        i += 1
    return None


def user_config_block(text: str) -> Optional[str]:
    """Substring of the first UserConfig block, braces included."""
    match = _USER_CONFIG_PATTERN.search(text)
    if not match:
        return None
    span = find_block(text, match.end())
    if span is None:
        return None
    return text[span[0]:span[1] + 1]


def extract_branch(text: str) -> Optional[Branch]:
    """Branch named by ``UserConfig.BetaKey``.

    Returns None when the UserConfig block is missing or malformed. A block
    without a BetaKey means the default (main) branch.
    """
    block = user_config_block(text)
    if block is None:
        return None
    return beta_key_to_branch(_match_value(_BETA_KEY_PATTERN, block))


def extract_build_id(text: str) -> Optional[str]:
    """First ``BuildID`` value anywhere in the manifest."""
    value = _match_value(_BUILD_ID_PATTERN, text)
    return value or None


def manifest_path_for_install(install_path: Path | str, app_id: str = DEFAULT_APP_ID) -> Path:
    """Manifest location for an install under ``<library>/common/<installdir>``."""
    library = os.path.abspath(os.path.join(os.fspath(install_path), os.pardir, os.pardir))
    return Path(library) / f"appmanifest_{app_id}.acf"


def read_manifest_text(path: Path, logger: Optional[logging.Logger] = None) -> Optional[str]:
    """Read a manifest; missing or unreadable files yield None."""
    log = logger or get_logger("manifest")
    try:
        return path.read_text(encoding="utf-8", errors="ignore")
    except FileNotFoundError:
        log.warning("App manifest not found at %s", path)
    except OSError as e:
        log.warning("App manifest unreadable at %s: %s", path, e)
    return None


class ManifestReader:
    """Answers "which branch/build is live" for an installation."""

    def __init__(self, app_id: str = DEFAULT_APP_ID, logger: Optional[logging.Logger] = None):
        self.app_id = app_id
        self.logger = logger or get_logger("manifest")

    def manifest_path(self, install_path: Path | str) -> Path:
        return manifest_path_for_install(install_path, self.app_id)

    def _read(self, install_path: Path | str) -> Optional[str]:
        if not install_path:
            return None
        return read_manifest_text(self.manifest_path(install_path), self.logger)

    def current_branch(self, install_path: Path | str) -> Optional[Branch]:
        text = self._read(install_path)
        if text is None:
            return None
        branch = extract_branch(text)
        if branch is None:
            self.logger.warning("No UserConfig block in manifest for %s", install_path)
        else:
            self.logger.debug("Live branch for %s: %s", install_path, branch.value)
        return branch

    def current_build_id(self, install_path: Path | str) -> Optional[str]:
        text = self._read(install_path)
        if text is None:
            return None
        build_id = extract_build_id(text)
        if build_id is None:
            self.logger.info("No BuildID in manifest for %s", install_path)
        return build_id

    def branch_and_build_id(self, install_path: Path | str) -> Tuple[Optional[Branch], Optional[str]]:
        text = self._read(install_path)
        if text is None:
            return None, None
        return extract_branch(text), extract_build_id(text)
