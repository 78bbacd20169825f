"""Tests for Steam library discovery."""

from __future__ import annotations

from pathlib import Path

from branchvault.libraries import (
    LibraryLocator,
    dedupe_roots,
    find_store_root,
    merge_roots,
    normalize_root,
    order_system_volume_first,
    parse_library_folders,
)


VDF = r'''
"libraryfolders"
{
	"0"
	{
		"path"		"C:\\Program Files (x86)\\Steam"
		"label"		""
	}
	"1"
	{
		"path"		"D:\\SteamLibrary"
		"apps"
		{
			"3164500"		"123"
		}
	}
}
'''


class TestParseLibraryFolders:
    def test_unescapes_backslashes(self):
        assert parse_library_folders(VDF) == [
            r"C:\Program Files (x86)\Steam",
            r"D:\SteamLibrary",
        ]

    def test_no_paths(self):
        assert parse_library_folders('"libraryfolders" { }') == []


class TestNormalizeRoot:
    def test_windows_spellings_collapse(self):
        assert normalize_root(r"C:\Steam\steamapps") == normalize_root("c:\\\\steam\\\\steamapps\\")

    def test_posix_trailing_slash(self, tmp_path: Path):
        assert normalize_root(f"{tmp_path}/steamapps/") == normalize_root(tmp_path / "steamapps")


class TestMergeRoots:
    def test_duplicates_removed_system_volume_first(self):
        roots = merge_roots(
            [r"C:\Steam\steamapps", "c:\\\\steam\\\\steamapps\\", r"D:\Games\steamapps"],
            system_volume="C:",
        )
        assert roots == [r"C:\Steam\steamapps", r"D:\Games\steamapps"]

    def test_system_volume_moves_first_stably(self):
        paths = [r"D:\A\steamapps", r"C:\B\steamapps", r"E:\C\steamapps", r"C:\D\steamapps"]
        assert order_system_volume_first(paths, "C:") == [
            r"C:\B\steamapps",
            r"C:\D\steamapps",
            r"D:\A\steamapps",
            r"E:\C\steamapps",
        ]

    def test_dedupe_keeps_first_spelling(self):
        assert dedupe_roots([r"D:\X", r"d:\x\\", r"D:/X"]) == [r"D:\X"]


class TestLibraryLocator:
    def test_no_store_root(self, tmp_path: Path):
        assert find_store_root([tmp_path / "missing"]) is None

    def test_default_root_only_without_descriptor(self, tmp_path: Path):
        store = tmp_path / "Steam"
        (store / "steamapps").mkdir(parents=True)
        roots = LibraryLocator(store, system_volume="/").discover()
        assert roots == [store / "steamapps"]

    def test_descriptor_entries_and_duplicates(self, tmp_path: Path):
        store = tmp_path / "Steam"
        (store / "steamapps").mkdir(parents=True)
        extra = tmp_path / "Library2"
        (extra / "steamapps").mkdir(parents=True)
        missing = tmp_path / "Gone"
        vdf = (
            '"libraryfolders"\n{\n'
            f'\t"0"\n\t{{\n\t\t"path"\t\t"{store}"\n\t}}\n'
            f'\t"1"\n\t{{\n\t\t"path"\t\t"{extra}"\n\t}}\n'
            f'\t"2"\n\t{{\n\t\t"path"\t\t"{missing}"\n\t}}\n'
            "}\n"
        )
        (store / "steamapps" / "libraryfolders.vdf").write_text(vdf, encoding="utf-8")

        roots = LibraryLocator(store, system_volume="/").discover()

        assert [normalize_root(r) for r in roots] == [
            normalize_root(store / "steamapps"),
            normalize_root(extra / "steamapps"),
        ]

    def test_missing_store_is_empty(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr("branchvault.libraries.default_store_candidates", lambda: [tmp_path / "none"])
        assert LibraryLocator(system_volume="/").discover() == []
