"""Tests for branch management (list, launch, delete)."""

from __future__ import annotations

from pathlib import Path

from branchvault.branches import BranchManager
from branchvault.manifest import ManifestReader
from branchvault.models import Branch, BranchStatus, LaunchCommand
from branchvault.registry import BranchConfig, BranchRegistry
from branchvault.status import BranchStatusEvaluator


class FakeProcess:
    pid = 4242


class RecordingLauncher:
    def __init__(self, result=FakeProcess(), error: Exception | None = None):
        self.calls = []
        self.options = []
        self.result = result
        self.error = error

    def __call__(self, cmd, cwd=None, **kwargs):
        self.calls.append((cmd, cwd))
        self.options.append(kwargs)
        if self.error:
            raise self.error
        return self.result


def _setup(tmp_path: Path, steam_library: Path, launcher=None):
    registry = BranchRegistry(tmp_path / "cfg" / "reg.json")
    config = BranchConfig.default()
    config.update_paths(steam_library, steam_library / "common" / "Schedule I", tmp_path / "snap")
    config.select_branches([Branch.MAIN, Branch.BETA])
    manager = BranchManager(
        registry,
        BranchStatusEvaluator(ManifestReader()),
        launcher=launcher or RecordingLauncher(),
    )
    return registry, config, manager


def _install(config: BranchConfig, branch: Branch) -> Path:
    folder = config.branch_folder(branch)
    (folder / "Data").mkdir(parents=True)
    (folder / "Schedule I.exe").write_bytes(b"MZ")
    (folder / "Data" / "level0").write_bytes(b"abc")
    return folder


class TestBranchManager:
    def test_list_branches_covers_all(self, tmp_path, steam_library):
        _, config, manager = _setup(tmp_path, steam_library)
        _install(config, Branch.MAIN)

        records = manager.list_branches(config)

        assert [r.branch for r in records] == Branch.ordered()
        assert records[0].is_installed
        assert records[0].is_current_remote_branch
        assert records[1].status == BranchStatus.NOT_INSTALLED

    def test_branches_available_to_add(self, tmp_path, steam_library):
        _, config, manager = _setup(tmp_path, steam_library)
        assert manager.branches_available_to_add(config) == [Branch.ALTERNATE, Branch.ALTERNATE_BETA]

    def test_record_build_id_saves(self, tmp_path, steam_library):
        registry, config, manager = _setup(tmp_path, steam_library)
        manager.record_build_id(config, Branch.BETA, "999")
        assert registry.load().branch_build_ids == {Branch.BETA: "999"}

    def test_capture_installed_branch(self, tmp_path, steam_library):
        registry, config, manager = _setup(tmp_path, steam_library)

        assert manager.capture_installed_branch(config) == Branch.MAIN

        loaded = registry.load()
        assert loaded.installed_branch == Branch.MAIN
        assert loaded.branch_build_ids == {Branch.MAIN: "1000"}

    def test_capture_without_install_path(self, tmp_path, steam_library):
        registry, _, manager = _setup(tmp_path, steam_library)
        assert manager.capture_installed_branch(BranchConfig.default()) is None
        assert not registry.exists()

    def test_delete_branch(self, tmp_path, steam_library):
        registry, config, manager = _setup(tmp_path, steam_library)
        config.set_build_id(Branch.BETA, "5")
        folder = _install(config, Branch.BETA)

        assert manager.delete_branch(config, Branch.BETA) is True

        assert not folder.exists()
        loaded = registry.load()
        assert loaded.selected_branches == [Branch.MAIN]
        assert loaded.branch_build_ids == {}

    def test_delete_not_installed_counts_as_success(self, tmp_path, steam_library):
        _, config, manager = _setup(tmp_path, steam_library)
        assert manager.delete_branch(config, Branch.BETA) is True
        assert Branch.BETA not in config.selected_branches

    def test_launch_uses_executable_folder(self, tmp_path, steam_library):
        launcher = RecordingLauncher()
        _, config, manager = _setup(tmp_path, steam_library, launcher)
        folder = _install(config, Branch.MAIN)
        record = manager.evaluator.evaluate(Branch.MAIN, config)

        assert manager.launch_branch(record, ["-batchmode"]) is True
        assert launcher.calls == [([str(folder / "Schedule I.exe"), "-batchmode"], str(folder))]

    def test_launch_not_installed(self, tmp_path, steam_library):
        launcher = RecordingLauncher()
        _, config, manager = _setup(tmp_path, steam_library, launcher)
        record = manager.evaluator.evaluate(Branch.BETA, config)
        assert manager.launch_branch(record) is False
        assert launcher.calls == []

    def test_launch_failure(self, tmp_path, steam_library):
        launcher = RecordingLauncher(error=PermissionError("denied"))
        _, config, manager = _setup(tmp_path, steam_library, launcher)
        _install(config, Branch.MAIN)
        record = manager.evaluator.evaluate(Branch.MAIN, config)
        assert manager.launch_branch(record) is False


class TestCustomLaunch:
    def test_set_and_remove_persisted(self, tmp_path, steam_library):
        registry, config, manager = _setup(tmp_path, steam_library)

        manager.set_launch_command(config, Branch.BETA, LaunchCommand("/opt/loader", "", "--mods", False))
        assert registry.load().custom_launch_commands == {Branch.BETA: "/opt/loader||--mods|False"}

        manager.set_launch_command(config, Branch.BETA, None)
        assert registry.load().custom_launch_commands == {}

    def test_launch_without_shell(self, tmp_path, steam_library):
        launcher = RecordingLauncher()
        _, config, manager = _setup(tmp_path, steam_library, launcher)
        folder = _install(config, Branch.BETA)
        config.set_custom_launch_command(Branch.BETA, f"/opt/loader|{folder}|--game beta|False")

        assert manager.launch_custom(config, Branch.BETA) is True
        assert launcher.calls == [(["/opt/loader", "--game", "beta"], str(folder))]
        assert launcher.options == [{"shell": False}]

    def test_launch_through_shell_ignores_missing_working_dir(self, tmp_path, steam_library):
        launcher = RecordingLauncher()
        _, config, manager = _setup(tmp_path, steam_library, launcher)
        _install(config, Branch.BETA)
        config.set_custom_launch_command(Branch.BETA, f"/opt/loader|{tmp_path / 'gone'}|-x|True")

        assert manager.launch_custom(config, Branch.BETA) is True
        assert launcher.calls == [('"/opt/loader" -x', None)]
        assert launcher.options == [{"shell": True}]

    def test_no_command_set(self, tmp_path, steam_library):
        launcher = RecordingLauncher()
        _, config, manager = _setup(tmp_path, steam_library, launcher)
        _install(config, Branch.BETA)
        assert manager.launch_custom(config, Branch.BETA) is False
        assert launcher.calls == []

    def test_requires_installed_snapshot(self, tmp_path, steam_library):
        launcher = RecordingLauncher()
        _, config, manager = _setup(tmp_path, steam_library, launcher)
        config.set_custom_launch_command(Branch.BETA, "/opt/loader")
        assert manager.launch_custom(config, Branch.BETA) is False
        assert launcher.calls == []

    def test_invalid_command(self, tmp_path, steam_library):
        launcher = RecordingLauncher()
        _, config, manager = _setup(tmp_path, steam_library, launcher)
        _install(config, Branch.BETA)
        config.set_custom_launch_command(Branch.BETA, "/opt/loader|||maybe")
        assert manager.launch_custom(config, Branch.BETA) is False
        assert launcher.calls == []

    def test_launcher_error(self, tmp_path, steam_library):
        launcher = RecordingLauncher(error=FileNotFoundError("no such file"))
        _, config, manager = _setup(tmp_path, steam_library, launcher)
        _install(config, Branch.BETA)
        config.set_custom_launch_command(Branch.BETA, "/opt/loader|||False")
        assert manager.launch_custom(config, Branch.BETA) is False
