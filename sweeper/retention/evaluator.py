"""
Retention evaluator — decides which directory entries are stale.

Pure decision logic plus a thin enumeration helper. Nothing in this
module deletes anything.

Retention policy: files directly inside each configured root are pruned
when older than the threshold. Subdirectories, and the root itself, are
never removed regardless of their age.

Usage:
    threshold = compute_threshold(days=3)
    for item in scan_directory("/var/log/app"):
        if isinstance(item, DirectoryEntry) and is_candidate(item, threshold):
            ...
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

from pydantic import BaseModel, ConfigDict


class DirectoryEntry(BaseModel):
    """One immediate child of a swept directory, captured at enumeration time."""

    model_config = ConfigDict(frozen=True)

    path: Path
    is_dir: bool
    modified_at: datetime


class EntryError(BaseModel):
    """An immediate child whose metadata could not be read."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    path: Path
    error: OSError


def compute_threshold(days: int, now: datetime | None = None) -> datetime:
    """Return the retention threshold ``now - days``.

    Computed once per cleanup run and held fixed for the whole pass.

    Raises:
        ValueError: days is negative.
    """
    if days < 0:
        raise ValueError(f"days must be >= 0, got {days}")
    if now is None:
        now = datetime.now(timezone.utc)
    return now - timedelta(days=days)


def is_stale(entry: DirectoryEntry, threshold: datetime) -> bool:
    """True when the entry was last modified before the threshold.

    Compared at whole-second resolution. Files and directories are judged
    the same way.
    """
    return int(entry.modified_at.timestamp()) < int(threshold.timestamp())


def is_candidate(entry: DirectoryEntry, threshold: datetime) -> bool:
    """True when the entry should be deleted under the file-pruning policy."""
    return not entry.is_dir and is_stale(entry, threshold)


def scan_directory(directory: str | Path) -> Iterator[DirectoryEntry | EntryError]:
    """Enumerate the immediate children of ``directory`` in filesystem order.

    A child whose stat fails is yielded as an EntryError so the caller can
    count it and move on.

    Raises:
        OSError: The directory itself cannot be opened for listing.
    """
    with os.scandir(directory) as it:
        for dirent in it:
            path = Path(dirent.path)
            try:
                is_dir = dirent.is_dir(follow_symlinks=False)
                stat = dirent.stat(follow_symlinks=False)
            except OSError as e:
                yield EntryError(path=path, error=e)
                continue
            yield DirectoryEntry(
                path=path,
                is_dir=is_dir,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )
