"""Day-to-day operations on managed branches: list, launch, delete."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .copier import remove_tree
from .models import Branch, BranchRecord, LaunchCommand
from .observability import get_logger, timeit
from .registry import BranchConfig, BranchRegistry
from .status import BranchStatusEvaluator


Launcher = Callable[..., object]


class BranchManager:
    """Branch bookkeeping on top of the registry and the status evaluator."""

    def __init__(
        self,
        registry: BranchRegistry,
        evaluator: Optional[BranchStatusEvaluator] = None,
        launcher: Optional[Launcher] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.registry = registry
        self.logger = logger or get_logger("branches")
        self.evaluator = evaluator or BranchStatusEvaluator(logger=self.logger)
        self.launcher = launcher or subprocess.Popen

    def list_branches(self, config: BranchConfig) -> List[BranchRecord]:
        """Records for every known branch, selected or not."""
        return self.evaluator.evaluate_all(config, Branch.ordered())

    def branches_available_to_add(self, config: BranchConfig) -> List[Branch]:
        selected = set(config.selected_branches)
        return [b for b in Branch.ordered() if b not in selected]

    def record_build_id(self, config: BranchConfig, branch: Branch, build_id: str) -> None:
        """Set the build id for a selected branch and persist the config."""
        config.set_build_id(branch, build_id)
        self.registry.save(config)
        self.logger.info("Updated build ID for branch %s: %s", branch.value, build_id)

    def capture_installed_branch(self, config: BranchConfig) -> Optional[Branch]:
        """Record which branch the live install is on (and its build, when selected)."""
        install = config.source_install
        if install is None:
            self.logger.warning("No source install configured; cannot detect live branch")
            return None
        branch, build_id = self.evaluator.reader.branch_and_build_id(install)
        if branch is None:
            return None
        config.installed_branch = branch
        if build_id and branch in config.selected_branches:
            config.set_build_id(branch, build_id)
        else:
            config.touch()
        self.registry.save(config)
        self.logger.info("Live install is on %s (build %s)", branch.value, build_id or "unknown")
        return branch

    def delete_branch(self, config: BranchConfig, branch: Branch) -> bool:
        """Remove a branch snapshot and stop managing it.

        A branch that is not installed counts as deleted. Returns False when
        the folder or the config could not be updated.
        """
        folder = config.branch_folder(branch)
        try:
            with timeit("branch.delete", logger=self.logger, branch=branch.value):
                if folder.exists():
                    remove_tree(folder)
                else:
                    self.logger.warning("Branch %s is not installed", branch.value)
                config.remove_branch(branch)
                self.registry.save(config)
        except OSError as e:
            self.logger.error("Error deleting branch %s: %s", branch.value, e)
            return False
        self.logger.info("Successfully deleted branch: %s", branch.value)
        return True

    def _start(self, argv, cwd: Optional[str], **kwargs) -> bool:
        try:
            process = self.launcher(argv, cwd=cwd, **kwargs)
        except OSError as e:
            self.logger.error("Error launching %s: %s", argv, e)
            return False
        if process is None:
            self.logger.error("Failed to start process for %s", argv)
            return False
        self.logger.info("Successfully launched %s (PID: %s)", argv, getattr(process, "pid", "?"))
        return True

    def launch_branch(self, record: BranchRecord, args: Sequence[str] = ()) -> bool:
        """Start the branch executable without waiting for it.

        Success means a process handle was obtained.
        """
        if not record.is_installed:
            self.logger.warning("Cannot launch branch %s - not installed", record.branch.value)
            return False
        executable = Path(record.executable_path)
        return self._start([str(executable), *args], str(executable.parent))

    def set_launch_command(
        self, config: BranchConfig, branch: Branch, command: Optional[LaunchCommand]
    ) -> None:
        """Store a branch's custom launch command (None removes it) and persist the config."""
        config.set_custom_launch_command(branch, command.format() if command else "")
        self.registry.save(config)
        if command is None:
            self.logger.info("Custom launch command removed for branch %s", branch.value)
        else:
            self.logger.info("Custom launch command set for branch %s: %s", branch.value, command.format())

    def launch_custom(self, config: BranchConfig, branch: Branch) -> bool:
        """Run the branch's custom launch command without waiting for it.

        The branch snapshot must be installed. The working directory is only
        applied when it exists; shell commands run through the system shell.
        """
        text = config.custom_launch_command(branch)
        if not text:
            self.logger.warning("No custom launch command is set for branch %s", branch.value)
            return False
        try:
            executable = config.branch_folder(branch) / self.evaluator.executable_name
            command = LaunchCommand.parse(text)
            if command.use_shell:
                argv: str | List[str] = f'"{command.path}" {command.arguments}'.strip()
            else:
                argv = [command.path, *shlex.split(command.arguments, posix=os.name != "nt")]
        except ValueError as e:
            self.logger.error("Invalid custom launch command for branch %s: %s", branch.value, e)
            return False
        if not executable.is_file():
            self.logger.warning("Cannot launch branch %s - not installed", branch.value)
            return False

        cwd = command.working_dir if command.working_dir and Path(command.working_dir).is_dir() else None
        self.logger.info("Executing custom launch command for branch %s: %s", branch.value, text)
        return self._start(argv, cwd, shell=command.use_shell)
