"""
Cleanup executor — one sweep over every configured directory.

Walks the roots in configuration order, asks the retention evaluator which
immediate children are stale files, deletes them and tallies the outcome.
Every failure (unreadable root, unreadable entry, failed delete) is logged
and processing continues; a run never raises.

Usage:
    executor = CleanupExecutor(config)
    report = executor.run()
"""

import os
from datetime import datetime, timezone

from loguru import logger
from pydantic import BaseModel, Field

from sweeper.config import SweeperConfig
from sweeper.retention.evaluator import (
    DirectoryEntry,
    EntryError,
    compute_threshold,
    is_candidate,
    scan_directory,
)


class CleanupReport(BaseModel):
    """Outcome of a single cleanup run. Logged, never persisted."""

    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    threshold: datetime
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def candidates(self) -> int:
        return self.success_count + self.failure_count


class CleanupExecutor:
    """Deletes stale files directly under each configured directory.

    Safe to call from a worker thread. Callers are expected to serialise
    runs (the scheduler's single-flight gate does this).

    Usage:
        executor = CleanupExecutor(config)
        report = executor.run()
    """

    def __init__(self, config: SweeperConfig) -> None:
        self._config = config

    def run(self, now: datetime | None = None) -> CleanupReport:
        """Execute one cleanup pass.

        Args:
            now: Reference time for the threshold. None = current time.

        Returns:
            CleanupReport with the final success/failure counts.
        """
        logger.info("---------------   cleanup run started   ---------------")
        threshold = compute_threshold(self._config.days, now)
        report = CleanupReport(threshold=threshold)
        logger.info(
            "Cleanup: threshold={} (days={}, directories={})",
            threshold.isoformat(timespec="seconds"),
            self._config.days,
            len(self._config.directories),
        )

        for directory in self._config.directories:
            try:
                self._sweep_directory(directory, threshold, report)
            except Exception as e:
                # Never let one root take the run (or the host) down
                logger.exception("Cleanup: unexpected error in {}: {}", directory, e)

        report.finished_at = datetime.now(timezone.utc)
        logger.info("Cleanup: deleted files: {}", report.success_count)
        logger.info("Cleanup: failed deletions: {}", report.failure_count)
        return report

    def _sweep_directory(
        self, directory: str, threshold: datetime, report: CleanupReport
    ) -> None:
        """Prune stale files in one root, updating ``report`` in place."""
        try:
            for item in scan_directory(directory):
                if isinstance(item, EntryError):
                    logger.error("Cleanup: cannot stat {}: {}", item.path, item.error)
                    report.failure_count += 1
                    continue
                if is_candidate(item, threshold):
                    self._delete(item, report)
        except OSError as e:
            # Files under an unlistable root were never reached, so nothing is counted
            logger.error("Cleanup: cannot list directory {}: {}", directory, e)

    @staticmethod
    def _delete(entry: DirectoryEntry, report: CleanupReport) -> None:
        try:
            os.remove(entry.path)
        except OSError as e:
            logger.error("Cleanup: failed to delete {}: {}", entry.path, e)
            report.failure_count += 1
            return
        logger.debug("Cleanup: deleted {}", entry.path)
        report.success_count += 1


def run_cleanup(config: SweeperConfig) -> CleanupReport:
    """Run one cleanup pass with ``config``."""
    return CleanupExecutor(config).run()
