from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep config files, registries and logs out of the real home directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.setenv("BRANCHVAULT_LOG_DISABLE_FILE", "1")
    for var in list(os.environ):
        if var.startswith("BRANCHVAULT_") and var != "BRANCHVAULT_LOG_DISABLE_FILE":
            monkeypatch.delenv(var, raising=False)
    return home


def write_manifest(library: Path, app_id: str = "3164500", *, name: str = "Schedule I",
                   installdir: str = "Schedule I", beta_key: str | None = None,
                   build_id: str = "1000") -> Path:
    """Write an appmanifest in Steam's key-value format."""
    user_config = ""
    if beta_key is not None:
        user_config = f'\t"UserConfig"\n\t{{\n\t\t"language"\t\t"english"\n\t\t"BetaKey"\t\t"{beta_key}"\n\t}}\n'
    else:
        user_config = '\t"UserConfig"\n\t{\n\t\t"language"\t\t"english"\n\t}\n'
    text = (
        '"AppState"\n{\n'
        f'\t"appid"\t\t"{app_id}"\n'
        f'\t"name"\t\t"{name}"\n'
        f'\t"installdir"\t\t"{installdir}"\n'
        f'\t"buildid"\t\t"{build_id}"\n'
        f"{user_config}"
        "}\n"
    )
    library.mkdir(parents=True, exist_ok=True)
    path = library / f"appmanifest_{app_id}.acf"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def steam_library(tmp_path):
    """A steamapps folder holding one installed game with a few files."""
    library = tmp_path / "Steam" / "steamapps"
    install = library / "common" / "Schedule I"
    (install / "Data").mkdir(parents=True)
    (install / "Schedule I.exe").write_bytes(b"MZ" + b"\0" * 62)
    (install / "Data" / "level0").write_bytes(b"x" * 100)
    (install / "Data" / "globalgamemanagers").write_bytes(b"y" * 50)
    write_manifest(library, beta_key="", build_id="1000")
    return library


@pytest.fixture
def make_manifest():
    return write_manifest
