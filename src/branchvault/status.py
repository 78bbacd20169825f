"""Branch status classification.

Build ids are authoritative when the live install is on the branch being
checked; otherwise the snapshot folder's age is the only signal.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .constants import DEFAULT_EXECUTABLE_NAME
from .copier import directory_stats
from .manifest import ManifestReader
from .models import Branch, BranchRecord, BranchStatus
from .observability import get_logger
from .registry import BranchConfig


# Age thresholds in days
FRESH_AGE_DAYS = 0.25  # ~6 hours
RECENT_AGE_DAYS = 1.0
STALE_AGE_DAYS = 7.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def age_in_days(last_modified: datetime, now: datetime) -> float:
    return (now - last_modified).total_seconds() / 86400.0


def status_from_age(age_days: float) -> BranchStatus:
    """Fallback when no remote build id is known."""
    if age_days < FRESH_AGE_DAYS:
        return BranchStatus.UP_TO_DATE
    if age_days < RECENT_AGE_DAYS:
        return BranchStatus.UP_TO_DATE
    # TODO: split 1-7 days from >= 7 days once a "stale" status exists
    if age_days < STALE_AGE_DAYS:
        return BranchStatus.UPDATE_AVAILABLE
    return BranchStatus.UPDATE_AVAILABLE


def classify(
    *,
    local_build_id: str,
    remote_build_id: str,
    is_current_remote_branch: bool,
    age_days: float,
) -> BranchStatus:
    """Status of an installed snapshot (the executable is known to exist)."""
    if not remote_build_id:
        return status_from_age(age_days)

    if not local_build_id:
        if is_current_remote_branch and age_days < RECENT_AGE_DAYS:
            return BranchStatus.UP_TO_DATE
        return BranchStatus.UPDATE_AVAILABLE

    if local_build_id == remote_build_id:
        if is_current_remote_branch or age_days < FRESH_AGE_DAYS:
            return BranchStatus.UP_TO_DATE
        return BranchStatus.UPDATE_AVAILABLE

    return BranchStatus.UPDATE_AVAILABLE


class BranchStatusEvaluator:
    """Builds BranchRecords from config, filesystem and the live manifest."""

    def __init__(
        self,
        reader: Optional[ManifestReader] = None,
        *,
        executable_name: str = DEFAULT_EXECUTABLE_NAME,
        now: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ):
        self.reader = reader or ManifestReader()
        self.executable_name = executable_name
        self.now = now
        self.logger = logger or get_logger("status")

    def evaluate(
        self,
        branch: Branch,
        config: BranchConfig,
        source_install_path: Optional[Path | str] = None,
    ) -> BranchRecord:
        install = source_install_path if source_install_path is not None else config.source_install_path
        root = config.snapshot_root or Path()
        folder = root / branch.value
        record = BranchRecord(
            branch=branch,
            folder_path=folder,
            executable_path=folder / self.executable_name,
        )

        if config.snapshot_root is None:
            # Nothing can be installed before a snapshot root is chosen
            record.status = BranchStatus.NOT_INSTALLED
            self.logger.debug("Branch %s status: %s (no snapshot root)", branch.value, record.status.value)
            return record

        try:
            if not record.executable_path.is_file():
                record.status = BranchStatus.NOT_INSTALLED
                return record

            record.last_modified = datetime.fromtimestamp(folder.stat().st_mtime, tz=timezone.utc)
            record.directory_size, record.file_count = directory_stats(folder)
            record.local_build_id = config.build_id_for(branch)

            current = self.reader.current_branch(install)
            if current == branch:
                record.remote_build_id = self.reader.current_build_id(install) or ""
                record.is_current_remote_branch = True

            record.status = classify(
                local_build_id=record.local_build_id,
                remote_build_id=record.remote_build_id,
                is_current_remote_branch=record.is_current_remote_branch,
                age_days=age_in_days(record.last_modified, self.now()),
            )
        except (OSError, ValueError):
            self.logger.exception("Error determining branch status for %s", branch.value)
            record.status = BranchStatus.ERROR

        self.logger.debug("Branch %s status: %s", branch.value, record.status.value)
        return record

    def evaluate_all(
        self,
        config: BranchConfig,
        branches: Optional[Iterable[Branch]] = None,
        source_install_path: Optional[Path | str] = None,
    ) -> List[BranchRecord]:
        """Evaluate each branch independently (all known branches by default)."""
        targets = list(branches) if branches is not None else Branch.ordered()
        records = [self.evaluate(b, config, source_install_path) for b in targets]
        self.logger.info("Loaded information for %d branches", len(records))
        return records
