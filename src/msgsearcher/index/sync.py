"""Incremental sync of watched folders into the record store.

For every file found on disk the staleness oracle decides what to do:
- UNCHANGED: skip (no extraction)
- STALE_OR_MISSING with a matched id: extract and replace in place
- STALE_OR_MISSING without one: extract and insert

Records whose files are no longer on disk are pruned afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..config import get_batch_size
from ..errors import IdentityLookupError
from .disk import extract, scan_folder
from .staleness import StalenessOracle

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .disk import Candidate
    from .folders import FolderConfig
    from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Result of a sync operation."""

    added: int = 0
    replaced: int = 0
    unchanged: int = 0
    deleted: int = 0
    errors: int = 0

    @property
    def total_changes(self) -> int:
        return self.added + self.replaced + self.deleted

    def merge(self, other: SyncResult) -> None:
        self.added += other.added
        self.replaced += other.replaced
        self.unchanged += other.unchanged
        self.deleted += other.deleted
        self.errors += other.errors


def _chunks(items: list, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _process_candidate(
    store: RecordStore,
    oracle: StalenessOracle,
    candidate: Candidate,
    result: SyncResult,
) -> None:
    try:
        check = oracle.check(
            candidate.filename,
            candidate.path,
            candidate.size,
            candidate.modified_time,
        )
    except IdentityLookupError as e:
        logger.debug("Skipping %s: %s", candidate.source, e)
        result.errors += 1
        return

    if check.unchanged:
        result.unchanged += 1
        return

    try:
        record = extract(candidate)
    except (OSError, ValueError, UnicodeDecodeError) as e:
        logger.debug("Failed to extract %s: %s", candidate.source, e)
        result.errors += 1
        return

    if check.matched_id is not None:
        store.replace(check.matched_id, record)
        result.replaced += 1
    else:
        store.insert(record)
        result.added += 1


def sync_folder(
    store: RecordStore,
    folder: FolderConfig,
    batch_size: int | None = None,
    progress_callback: Callable[[int, int | None, str], None] | None = None,
) -> SyncResult:
    """
    Bring the index up to date with one watched folder.

    Args:
        store: Record store to write to
        folder: Folder definition (must be registered, i.e. have a rowid)
        batch_size: Writes per transaction (config default if None)
        progress_callback: Optional callback(current, total, message)

    Returns:
        SyncResult with per-outcome counts

    Raises:
        ValueError: If the folder has no rowid
        sqlite3.Error: Database failures propagate; the current batch is
            rolled back
    """
    if folder.rowid is None:
        raise ValueError(f"Folder {folder.name!r} is not registered")

    result = SyncResult()
    size = batch_size or get_batch_size()

    if progress_callback:
        progress_callback(0, None, f"Scanning {folder.name}...")

    try:
        candidates = list(scan_folder(folder))
    except OSError as e:
        # Never prune a folder we could not read
        logger.warning("Cannot scan folder %s (%s): %s", folder.name, folder.path, e)
        result.errors += 1
        return result

    total = len(candidates)
    oracle = StalenessOracle(store)
    processed = 0

    for chunk in _chunks(candidates, size):
        with store.batch():
            for candidate in chunk:
                _process_candidate(store, oracle, candidate, result)
        processed += len(chunk)
        if progress_callback:
            progress_callback(processed, total, f"{folder.name}: {processed}/{total}")

    on_disk = {(c.filename, c.path) for c in candidates}
    vanished = sorted(store.identities_for_folder(folder.rowid) - on_disk)
    for chunk in _chunks(vanished, size):
        with store.batch():
            for filename, path in chunk:
                result.deleted += store.delete_by_identity(filename, path)

    logger.info(
        "Synced %s: added=%d, replaced=%d, unchanged=%d, deleted=%d, errors=%d",
        folder.name,
        result.added,
        result.replaced,
        result.unchanged,
        result.deleted,
        result.errors,
    )
    return result


def sync_folders(
    store: RecordStore,
    folders: Iterable[FolderConfig],
    batch_size: int | None = None,
    progress_callback: Callable[[int, int | None, str], None] | None = None,
) -> SyncResult:
    """Sync several folders and return the combined result."""
    total = SyncResult()
    for folder in folders:
        total.merge(sync_folder(store, folder, batch_size, progress_callback))
    return total
