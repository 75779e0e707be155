"""Tests for the staleness oracle."""

from __future__ import annotations

import logging
import sqlite3

import pytest

from msgsearcher.errors import FingerprintMismatchAmbiguous, IdentityLookupError
from msgsearcher.index.staleness import Outcome, StalenessOracle
from msgsearcher.index.store import MessageRecord, RecordStore

SIZE = 323584
MTIME = 1595441780


@pytest.fixture
def oracle(store: RecordStore) -> StalenessOracle:
    return StalenessOracle(store)


@pytest.fixture
def report_id(store: RecordStore) -> int:
    return store.insert(
        MessageRecord(
            filename="report.msg",
            path="2020:07",
            size=SIZE,
            modified_time=MTIME,
            subject="Status",
        )
    )


class TestCheck:
    """Tests for StalenessOracle.check."""

    def test_matching_fingerprint_is_unchanged(self, oracle, report_id):
        check = oracle.check("report.msg", "2020:07", SIZE, MTIME)
        assert check.outcome is Outcome.UNCHANGED
        assert check.unchanged
        assert check.matched_id == report_id

    def test_size_change_is_stale_with_matched_id(self, oracle, report_id):
        check = oracle.check("report.msg", "2020:07", 999, MTIME)
        assert check.outcome is Outcome.STALE_OR_MISSING
        assert check.matched_id == report_id

    @pytest.mark.parametrize(
        "size, mtime",
        [
            (SIZE + 1, MTIME),
            (SIZE, MTIME + 1),
            (SIZE, MTIME - 1),
            (0, 0),
        ],
    )
    def test_any_fingerprint_change_is_stale(self, oracle, report_id, size, mtime):
        check = oracle.check("report.msg", "2020:07", size, mtime)
        assert check.outcome is Outcome.STALE_OR_MISSING
        assert check.matched_id == report_id

    def test_unknown_identity_is_missing(self, oracle, report_id):
        check = oracle.check("report.msg", "2020:08", SIZE, MTIME)
        assert check.outcome is Outcome.STALE_OR_MISSING
        assert check.matched_id is None

    def test_empty_store(self, oracle):
        check = oracle.check("a.eml", "", 1, 1)
        assert check.outcome is Outcome.STALE_OR_MISSING
        assert check.matched_id is None

    def test_malformed_identity_raises(self, oracle):
        with pytest.raises(IdentityLookupError):
            oracle.check("report.msg", "2020/07", SIZE, MTIME)

    def test_check_never_writes(self, temp_db: sqlite3.Connection, oracle, report_id):
        before = temp_db.total_changes
        oracle.check("report.msg", "2020:07", 1, 1)
        oracle.check("new.msg", "", 1, 1)
        assert temp_db.total_changes == before


class TestAmbiguousIdentity:
    """Several live rows for one identity (legacy data)."""

    @pytest.fixture
    def duplicates(self, temp_db: sqlite3.Connection) -> None:
        for size, mtime in ((1, 100), (2, 200)):
            temp_db.execute(
                "INSERT INTO messages (filename, path, size, time) "
                "VALUES ('dup.eml', 'x', ?, ?)",
                (size, mtime),
            )
        temp_db.commit()

    def test_latest_row_decides(self, oracle, duplicates):
        with pytest.warns(FingerprintMismatchAmbiguous):
            check = oracle.check("dup.eml", "x", 2, 200)
        assert check.unchanged
        assert check.matched_id == 2
        assert check.duplicate_ids == (1,)

    def test_older_fingerprint_is_stale(self, oracle, duplicates):
        with pytest.warns(FingerprintMismatchAmbiguous) as record:
            check = oracle.check("dup.eml", "x", 1, 100)
        assert check.outcome is Outcome.STALE_OR_MISSING
        assert check.matched_id == 2
        assert record[0].message.ids == [1, 2]

    def test_ambiguity_is_logged(self, oracle, duplicates, caplog):
        with caplog.at_level(logging.WARNING, logger="msgsearcher.index.staleness"):
            with pytest.warns(FingerprintMismatchAmbiguous):
                oracle.check("dup.eml", "x", 2, 200)
        assert "Ambiguous identity" in caplog.text
