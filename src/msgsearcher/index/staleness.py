"""Staleness check for incremental indexing.

A stored record is reused when its fingerprint (size, modification time)
matches the file on disk; otherwise the file must be re-extracted and the
record inserted or replaced. The check never writes.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import FingerprintMismatchAmbiguous

if TYPE_CHECKING:
    from .store import RecordStore

logger = logging.getLogger(__name__)


class Outcome(Enum):
    """Result of comparing a file's fingerprint with its stored record."""

    UNCHANGED = "unchanged"
    STALE_OR_MISSING = "stale_or_missing"


@dataclass(frozen=True)
class StalenessCheck:
    """
    Outcome of a staleness check.

    matched_id is the record to skip (UNCHANGED) or to replace
    (STALE_OR_MISSING); it is None when the file has never been indexed.
    duplicate_ids lists any older rows sharing the identity.
    """

    outcome: Outcome
    matched_id: int | None = None
    duplicate_ids: tuple[int, ...] = ()

    @property
    def unchanged(self) -> bool:
        return self.outcome is Outcome.UNCHANGED


class StalenessOracle:
    """Decides whether a stored record is still valid for a file on disk."""

    def __init__(self, store: RecordStore):
        self._store = store

    def check(
        self, filename: str, path: str, size: int, modified_time: int
    ) -> StalenessCheck:
        """
        Compare a file's current fingerprint with its stored record.

        Args:
            filename: File name (identity part 1)
            path: Normalized folder path (identity part 2)
            size: Current size in bytes
            modified_time: Current modification time, epoch seconds

        Returns:
            StalenessCheck with UNCHANGED when both size and time match

        Raises:
            IdentityLookupError: If filename/path are malformed
        """
        rows = self._store.lookup_identity(filename, path)
        if not rows:
            return StalenessCheck(Outcome.STALE_OR_MISSING)

        # Most recently inserted row wins
        current = rows[-1]
        duplicates = tuple(row["rowid"] for row in rows[:-1])
        if duplicates:
            ids = [row["rowid"] for row in rows]
            logger.warning(
                "Ambiguous identity %s/%s: %d live records %s, using %d",
                path,
                filename,
                len(ids),
                ids,
                current["rowid"],
            )
            warnings.warn(
                FingerprintMismatchAmbiguous(filename, path, ids),
                stacklevel=2,
            )

        if current["size"] == size and current["time"] == modified_time:
            outcome = Outcome.UNCHANGED
        else:
            outcome = Outcome.STALE_OR_MISSING
        return StalenessCheck(outcome, current["rowid"], duplicates)
