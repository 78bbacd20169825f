"""Multi-branch snapshot workflow.

Copies the live install once per selected branch. Between branches the user
switches the branch in Steam; the orchestrator polls the live manifest until
the switch shows up, the wait times out or the run is cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ulid import ULID

from .catalog import GameCatalog
from .constants import DEFAULT_POLL_INTERVAL, DEFAULT_SWITCH_TIMEOUT
from .copier import SnapshotCopier
from .errors import BranchCopyError, BranchvaultError, SnapshotRootError
from .libraries import LibraryLocator
from .lock import SnapshotRootLock
from .manifest import ManifestReader
from .models import Branch, CopyResult
from .observability import get_logger, log_action, log_debug, log_error, log_warning
from .registry import BranchConfig, BranchRegistry


class WorkflowState(str, Enum):
    """Orchestrator states."""

    IDLE = "idle"
    COPYING_BRANCH = "copying_branch"
    WAITING_FOR_SWITCH = "waiting_for_switch"
    COMPLETED = "completed"
    ABORTED = "aborted"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowState.COMPLETED, WorkflowState.ABORTED, WorkflowState.TIMED_OUT)


class WaitStatus(str, Enum):
    SWITCHED = "switched"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass
class WaitOutcome:
    """Result of one wait-for-switch cycle.

    ``checks`` counts every branch query including the one at t=0;
    ``polls`` counts only the queries made after an interval sleep.
    """

    status: WaitStatus
    target: Branch
    elapsed: float
    budget: float
    checks: int

    @property
    def polls(self) -> int:
        return max(self.checks - 1, 0)


@dataclass
class WorkflowResult:
    """Terminal outcome of a run. Timeouts are a result, not an exception."""

    state: WorkflowState
    run_id: str
    copied_branches: List[Branch] = field(default_factory=list)
    skipped_branches: List[Branch] = field(default_factory=list)
    copy_results: Dict[Branch, CopyResult] = field(default_factory=dict)
    wait_cycles: int = 0
    waits: List[WaitOutcome] = field(default_factory=list)
    reason: str = ""
    error: Optional[BranchvaultError] = None
    failed_branch: Optional[Branch] = None
    timed_out_branch: Optional[Branch] = None
    elapsed: float = 0.0
    budget: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state == WorkflowState.COMPLETED


class WorkflowObserver:
    """Receives workflow events. Override what you need; all are no-ops.

    Callbacks run on the thread executing ``run()``.
    """

    def on_state_change(self, state: WorkflowState, branch: Optional[Branch]) -> None:
        pass

    def on_progress(self, branch: Branch, copied: int, total: int) -> None:
        pass

    def on_copy_result(self, branch: Branch, result: CopyResult) -> None:
        pass

    def on_switch_prompt(self, current: Branch, next_branch: Branch) -> bool:
        """Ask the user to switch branches in Steam. False cancels the run."""
        return True

    def on_message(self, message: str) -> None:
        pass


class SwitchOrchestrator:
    """Runs the copy / wait-for-switch cycle for the selected branches.

    Args:
        config: Registry document; its selection and paths drive the run
        reader: Live manifest access
        copier: Tree copier used per branch
        registry: When given, the config is saved after each recorded build id
        observer: Event sink (prompts, progress, results)
        catalog, locator: Used to find the live install when the config lacks one
        poll_interval: Seconds between branch checks while waiting
        timeout: Wait budget per switch, measured from the start of the wait
        clock: Monotonic time source
        sleep: Sleeper; defaults to an interruptible wait on the cancel event
    """

    def __init__(
        self,
        config: BranchConfig,
        *,
        reader: Optional[ManifestReader] = None,
        copier: Optional[SnapshotCopier] = None,
        registry: Optional[BranchRegistry] = None,
        observer: Optional[WorkflowObserver] = None,
        catalog: Optional[GameCatalog] = None,
        locator: Optional[LibraryLocator] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_SWITCH_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], object]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if timeout < 0:
            raise ValueError("timeout must not be negative")
        self.config = config
        self.logger = logger or get_logger("orchestrator")
        self.reader = reader or ManifestReader(logger=self.logger)
        self.copier = copier or SnapshotCopier(logger=self.logger)
        self.registry = registry
        self.observer = observer or WorkflowObserver()
        self.catalog = catalog
        self.locator = locator
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.clock = clock
        self._cancel_event = threading.Event()
        self.sleep = sleep or self._cancel_event.wait
        self._state = WorkflowState.IDLE
        self.run_id: Optional[str] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation; an in-progress wait wakes immediately.

        Has no effect once the run has finished.
        """
        if self._state.is_terminal:
            return
        self._cancel_event.set()

    def _set_state(self, state: WorkflowState, branch: Optional[Branch] = None) -> None:
        self._state = state
        self.logger.debug("Workflow %s -> %s (%s)", self.run_id, state.value, branch.value if branch else "-")
        self._emit(self.observer.on_state_change, state, branch)

    def _emit(self, callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception:
            self.logger.warning("Workflow observer failed in %s", callback.__name__, exc_info=True)

    def _message(self, message: str) -> None:
        self.logger.info(message)
        self._emit(self.observer.on_message, message)

    # ------------------------------------------------------------------
    # Wait for switch
    # ------------------------------------------------------------------

    def wait_for_branch(self, target: Branch, install_path: Path | str) -> WaitOutcome:
        """Poll the live manifest until it reports ``target``.

        The first check happens immediately. A sleep that would end past the
        budget is not taken; a check landing exactly on the deadline is.
        """
        start = self.clock()
        checks = 0

        def outcome(status: WaitStatus) -> WaitOutcome:
            return WaitOutcome(status, target, self.clock() - start, self.timeout, checks)

        while True:
            if self.cancelled:
                return outcome(WaitStatus.CANCELLED)

            checks += 1
            current = self.reader.current_branch(install_path)
            if current == target:
                return outcome(WaitStatus.SWITCHED)
            log_debug(
                "Waiting for branch switch",
                logger=self.logger,
                current=current.value if current else None,
                target=target.value,
                check=checks,
            )

            elapsed = self.clock() - start
            if elapsed + self.poll_interval > self.timeout:
                return outcome(WaitStatus.TIMED_OUT)

            self.sleep(self.poll_interval)
            if self.cancelled:
                return outcome(WaitStatus.CANCELLED)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _ensure_snapshot_root(self) -> Path:
        root = self.config.snapshot_root
        if root is None:
            raise SnapshotRootError("", ValueError("snapshot root path is not configured"))
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SnapshotRootError(root, e) from e
        return root

    def _resolve_source_install(self) -> Optional[Path]:
        if self.config.source_install is not None:
            return self.config.source_install
        if self.catalog is None or self.locator is None:
            return None
        app = self.catalog.find_target_across_roots(self.locator.discover())
        if app is None:
            return None
        self.config.update_paths(app.library_root, app.install_path, self.config.snapshot_root_path)
        return app.install_path

    def _record_build_id(self, branch: Branch, install_path: Path) -> None:
        live, build_id = self.reader.branch_and_build_id(install_path)
        # The manifest only describes the build of the branch that is live
        if live != branch or not build_id:
            return
        self.config.set_build_id(branch, build_id)
        if self.registry is None:
            return
        try:
            self.registry.save(self.config)
        except OSError as e:
            # The id stays on the in-memory config
            log_warning(
                "Could not save build id",
                logger=self.logger,
                branch=branch.value,
                build_id=build_id,
                error=str(e),
            )

    def _copy_branch(self, branch: Branch, install_path: Path, root: Path) -> CopyResult:
        self._set_state(WorkflowState.COPYING_BRANCH, branch)
        self._message(f"Copying game files to {branch.value}...")

        def progress(copied: int, total: int) -> None:
            self.observer.on_progress(branch, copied, total)

        return self.copier.copy_tree(install_path, root / branch.value, on_progress=progress)

    def _finish(self, result: WorkflowResult, started: float) -> WorkflowResult:
        self._set_state(result.state, result.failed_branch or result.timed_out_branch)
        duration_ms = (self.clock() - started) * 1000.0
        outcome = "ok" if result.ok else result.state.value
        log_action(
            "workflow.run",
            outcome=outcome,
            duration_ms=duration_ms,
            logger=self.logger,
            run_id=result.run_id,
            copied=[b.value for b in result.copied_branches],
            skipped=[b.value for b in result.skipped_branches],
            reason=result.reason or None,
        )
        return result

    def run(self) -> WorkflowResult:
        """Run the whole workflow.

        Raises:
            SnapshotRootError: If the snapshot root cannot be created
            WorkflowBusyError: If another workflow holds the snapshot root
        """
        self.run_id = str(ULID()).lower()
        root = self._ensure_snapshot_root()
        with SnapshotRootLock(root):
            return self._run_locked(root)

    def _run_locked(self, root: Path) -> WorkflowResult:
        started = self.clock()
        result = WorkflowResult(state=WorkflowState.IDLE, run_id=self.run_id or "")
        selected = list(self.config.selected_branches)

        install_path = self._resolve_source_install()
        if install_path is None:
            result.state = WorkflowState.ABORTED
            result.reason = "source install not found"
            return self._finish(result, started)

        self._message(
            f"Starting snapshot workflow for {len(selected)} branches from {install_path}"
        )
        # Branch that became live because this run waited for it
        arrived: Optional[Branch] = None

        for index, branch in enumerate(selected):
            if self.cancelled:
                result.state = WorkflowState.ABORTED
                result.reason = "cancelled"
                return self._finish(result, started)

            current = self.reader.current_branch(install_path)
            if branch == current and branch != arrived:
                self._message(f"{branch.display_name} is already live, skipping copy")
                result.skipped_branches.append(branch)
            else:
                try:
                    copy_result = self._copy_branch(branch, install_path, root)
                except Exception as e:
                    log_error(
                        "Copy failed",
                        logger=self.logger,
                        run_id=result.run_id,
                        branch=branch.value,
                        error=str(e),
                    )
                    result.state = WorkflowState.ABORTED
                    result.reason = "copy failed"
                    result.failed_branch = branch
                    result.error = BranchCopyError(branch.value, e)
                    return self._finish(result, started)
                result.copied_branches.append(branch)
                result.copy_results[branch] = copy_result
                self._emit(self.observer.on_copy_result, branch, copy_result)
                self._record_build_id(branch, install_path)
                self._message(f"Completed copying branch: {branch.value}")

            if index + 1 >= len(selected):
                break

            next_branch = selected[index + 1]
            if self.reader.current_branch(install_path) == next_branch:
                arrived = None
                continue

            self._set_state(WorkflowState.WAITING_FOR_SWITCH, next_branch)
            try:
                proceed = self.observer.on_switch_prompt(branch, next_branch)
            except Exception:
                self.logger.warning("Switch prompt failed", exc_info=True)
                proceed = False
            if proceed is False:
                result.state = WorkflowState.ABORTED
                result.reason = "cancelled"
                return self._finish(result, started)

            outcome = self.wait_for_branch(next_branch, install_path)
            result.wait_cycles += 1
            result.waits.append(outcome)
            log_action(
                "workflow.wait",
                outcome=outcome.status.value,
                logger=self.logger,
                run_id=result.run_id,
                target=next_branch.value,
                elapsed_s=round(outcome.elapsed, 3),
                checks=outcome.checks,
            )
            if outcome.status == WaitStatus.CANCELLED:
                result.state = WorkflowState.ABORTED
                result.reason = "cancelled"
                return self._finish(result, started)
            if outcome.status == WaitStatus.TIMED_OUT:
                result.state = WorkflowState.TIMED_OUT
                result.reason = f"branch switch to {next_branch.value} not detected"
                result.timed_out_branch = next_branch
                result.elapsed = outcome.elapsed
                result.budget = outcome.budget
                return self._finish(result, started)
            arrived = next_branch
            self._message(f"Successfully switched to branch: {next_branch.value}")

        result.state = WorkflowState.COMPLETED
        return self._finish(result, started)
