"""
Tests for sweeper/retention/executor.py — one cleanup pass over real temp directories.

Tests cover:
- Stale files deleted, fresh files and subdirectories untouched
- success + failure == number of stale candidates
- Idempotence of back-to-back runs
- Unlistable roots skipped without counting failures
- Delete and stat failures counted while the run continues
"""

import os
import time
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from sweeper.config import SweeperConfig
from sweeper.retention.evaluator import EntryError
from sweeper.retention.executor import CleanupExecutor, CleanupReport, run_cleanup

_PERMISSIONS_IGNORED = os.name == "nt" or os.geteuid() == 0

# ── Helpers ─────────────────────────────────────────────────────────────────


def _make_file(path: Path, age_days: float) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("data", encoding="utf-8")
    ts = time.time() - age_days * 86400
    os.utime(path, (ts, ts))
    return path


def _config(*directories: Path, days: int = 3) -> SweeperConfig:
    return SweeperConfig(
        directories=[str(d) for d in directories],
        days=days,
        time="0 2 * * *",
    )


# ── Basic behaviour ─────────────────────────────────────────────────────────


class TestCleanupExecutor:
    def test_deletes_old_keeps_new(self, tmp_path: Path) -> None:
        """old.log (5 days) is removed, new.log (1 day) survives."""
        root = tmp_path / "a"
        old = _make_file(root / "old.log", 5)
        new = _make_file(root / "new.log", 1)

        report = CleanupExecutor(_config(root)).run()

        assert not old.exists()
        assert new.exists()
        assert report.success_count == 1
        assert report.failure_count == 0

    def test_subdirectories_untouched(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        nested = _make_file(root / "sub" / "deep.log", 30)
        sub = root / "sub"
        ts = time.time() - 30 * 86400
        os.utime(sub, (ts, ts))

        report = CleanupExecutor(_config(root)).run()

        assert sub.is_dir()
        assert nested.exists()
        assert report.candidates == 0

    def test_root_itself_never_removed(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        _make_file(root / "old.log", 10)
        ts = time.time() - 10 * 86400
        os.utime(root, (ts, ts))

        CleanupExecutor(_config(root)).run()

        assert root.is_dir()

    def test_counts_match_candidates(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        stale = [_make_file(root / f"old{i}.log", 4 + i) for i in range(4)]
        _make_file(root / "fresh.log", 0)

        report = CleanupExecutor(_config(root)).run()

        assert report.success_count + report.failure_count == len(stale)
        assert not any(p.exists() for p in stale)

    def test_multiple_roots_in_order(self, tmp_path: Path) -> None:
        first = tmp_path / "first"
        second = tmp_path / "second"
        _make_file(first / "x.log", 5)
        _make_file(second / "y.log", 5)
        _make_file(second / "z.log", 5)

        deleted: list[str] = []
        real_remove = os.remove

        def _tracking_remove(path: os.PathLike[str] | str) -> None:
            deleted.append(Path(path).parent.name)
            real_remove(path)

        with patch("sweeper.retention.executor.os.remove", side_effect=_tracking_remove):
            report = CleanupExecutor(_config(first, second)).run()

        assert report.success_count == 3
        assert deleted == ["first", "second", "second"]

    def test_zero_days_deletes_everything_older_than_now(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        old = _make_file(root / "yesterday.log", 1)

        report = CleanupExecutor(_config(root, days=0)).run()

        assert not old.exists()
        assert report.success_count == 1

    def test_idempotent(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        _make_file(root / "old.log", 5)
        executor = CleanupExecutor(_config(root))

        first = executor.run()
        second = executor.run()

        assert first.success_count == 1
        assert second.success_count == 0
        assert second.failure_count == 0

    def test_threshold_fixed_from_reference_time(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        _make_file(root / "old.log", 5)
        now = datetime(2026, 1, 10, tzinfo=timezone.utc)

        report = CleanupExecutor(_config(root)).run(now=now)

        assert report.threshold == datetime(2026, 1, 7, tzinfo=timezone.utc)
        assert report.finished_at is not None

    def test_does_not_mutate_config(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        _make_file(root / "old.log", 5)
        config = _config(root)
        before = config.model_dump()

        CleanupExecutor(config).run()

        assert config.model_dump() == before

    def test_run_cleanup_helper(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        _make_file(root / "old.log", 5)

        report = run_cleanup(_config(root))

        assert isinstance(report, CleanupReport)
        assert report.success_count == 1


# ── Failure handling ────────────────────────────────────────────────────────


class TestCleanupFailures:
    def test_missing_root_skipped(self, tmp_path: Path) -> None:
        """An unlistable root counts nothing; later roots are still swept."""
        good = tmp_path / "good"
        old = _make_file(good / "old.log", 5)

        report = CleanupExecutor(_config(tmp_path / "missing", good)).run()

        assert not old.exists()
        assert report.success_count == 1
        assert report.failure_count == 0

    def test_root_that_is_a_file_skipped(self, tmp_path: Path) -> None:
        not_a_dir = _make_file(tmp_path / "plain.txt", 5)
        good = tmp_path / "good"
        _make_file(good / "old.log", 5)

        report = CleanupExecutor(_config(not_a_dir, good)).run()

        assert not_a_dir.exists()
        assert report.success_count == 1
        assert report.failure_count == 0

    def test_delete_failure_counted_and_file_kept(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        locked = _make_file(root / "locked.log", 5)
        other = _make_file(root / "other.log", 5)
        real_remove = os.remove

        def _remove(path: os.PathLike[str] | str) -> None:
            if Path(path).name == "locked.log":
                raise PermissionError(13, "Permission denied", str(path))
            real_remove(path)

        with patch("sweeper.retention.executor.os.remove", side_effect=_remove):
            report = CleanupExecutor(_config(root)).run()

        assert locked.exists()
        assert not other.exists()
        assert report.success_count == 1
        assert report.failure_count == 1

    def test_vanished_candidate_counted_as_failure(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        _make_file(root / "gone.log", 5)

        with patch(
            "sweeper.retention.executor.os.remove",
            side_effect=FileNotFoundError(2, "No such file"),
        ):
            report = CleanupExecutor(_config(root)).run()

        assert report.candidates == 1
        assert report.failure_count == 1

    def test_stat_failure_counted(self, tmp_path: Path) -> None:
        root = tmp_path / "a"
        old = _make_file(root / "old.log", 5)
        from sweeper.retention import evaluator

        real_scan = evaluator.scan_directory

        def _scan(directory: str | Path):  # type: ignore[no-untyped-def]
            yield EntryError(path=Path(directory) / "broken", error=PermissionError("denied"))
            yield from real_scan(directory)

        with patch("sweeper.retention.executor.scan_directory", side_effect=_scan):
            report = CleanupExecutor(_config(root)).run()

        assert not old.exists()
        assert report.success_count == 1
        assert report.failure_count == 1

    def test_unexpected_error_does_not_abort_run(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad"
        good = tmp_path / "good"
        _make_file(bad / "old.log", 5)
        old = _make_file(good / "old.log", 5)
        from sweeper.retention import evaluator

        real_scan = evaluator.scan_directory

        def _scan(directory: str | Path):  # type: ignore[no-untyped-def]
            if Path(directory).name == "bad":
                raise RuntimeError("boom")
            return real_scan(directory)

        with patch("sweeper.retention.executor.scan_directory", side_effect=_scan):
            report = CleanupExecutor(_config(bad, good)).run()

        assert not old.exists()
        assert report.success_count == 1

    @pytest.mark.skipif(_PERMISSIONS_IGNORED, reason="permission bits are not enforced")
    def test_unreadable_root(self, tmp_path: Path) -> None:
        locked = tmp_path / "locked"
        inner = _make_file(locked / "old.log", 5)
        good = tmp_path / "good"
        _make_file(good / "old.log", 5)
        locked.chmod(0o000)
        try:
            report = CleanupExecutor(_config(locked, good)).run()
        finally:
            locked.chmod(0o755)

        assert inner.exists()
        assert report.success_count == 1
        assert report.failure_count == 0
