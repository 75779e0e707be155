"""Shared pytest fixtures for msgsearcher tests."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from msgsearcher.index.folders import FolderConfig, FolderStore
from msgsearcher.index.schema import (
    LAYOUT_FTS,
    LAYOUT_ROW,
    SCHEMA_VERSION,
    get_schema_sql,
)
from msgsearcher.index.store import MessageRecord, RecordStore


def _memory_db(layout: str) -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.executescript(get_schema_sql(layout))
    conn.execute(
        "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
    )
    conn.commit()
    return conn


@pytest.fixture
def temp_db():
    """Create an in-memory database with the fts layout."""
    conn = _memory_db(LAYOUT_FTS)
    yield conn
    conn.close()


@pytest.fixture
def row_db():
    """Create an in-memory database with the plain row layout."""
    conn = _memory_db(LAYOUT_ROW)
    yield conn
    conn.close()


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Return a temporary path for a database file."""
    return tmp_path / "test_index.db"


@pytest.fixture
def folder_ref(temp_db: sqlite3.Connection) -> int:
    """Register one folder in temp_db and return its rowid."""
    return FolderStore(temp_db).add(FolderConfig(name="Outlook", path="/archive"))


@pytest.fixture
def store(temp_db: sqlite3.Connection) -> RecordStore:
    return RecordStore(temp_db)


@pytest.fixture
def sample_records() -> list[MessageRecord]:
    """Return sample records (folder_ref filled in by populated_db)."""
    return [
        MessageRecord(
            filename="report.msg",
            path="2020:07",
            size=323584,
            modified_time=1595441780,
            subject="Status",
            sender="raymond@x",
            recipient="team@x",
            contents="Weekly status report for July.",
            send_date=1595440000,
        ),
        MessageRecord(
            filename="pricing.eml",
            path="2021:01",
            size=2048,
            modified_time=1610000000,
            subject="consumable meat pricing",
            sender="butcher@farm.example",
            recipient="buyer@shop.example",
            cc="ray@shop.example",
            contents="Updated price list attached.",
            send_date=1609990000,
            attachments=("prices.xlsx",),
        ),
        MessageRecord(
            filename="invoice_2021.eml",
            path="2021:02",
            size=4096,
            modified_time=1612000000,
            subject="Invoice #12345",
            sender="billing@vendor.example",
            recipient="buyer@shop.example",
            contents="Your invoice for February. Total: $500",
            send_date=1611990000,
        ),
        MessageRecord(
            filename="empty.txt",
            path="",
            size=0,
            modified_time=1600000000,
            contents="",
        ),
    ]


@pytest.fixture
def populated_db(
    temp_db: sqlite3.Connection,
    folder_ref: int,
    sample_records: list[MessageRecord],
):
    """fts database with the sample records inserted (ids 1..4)."""
    store = RecordStore(temp_db)
    with store.batch():
        for record in sample_records:
            record.folder_ref = folder_ref
            store.insert(record)
    return temp_db


@pytest.fixture
def archive(tmp_path: Path) -> Path:
    """A small on-disk archive of messages and text files."""
    root = tmp_path / "archive"
    (root / "2020" / "07").mkdir(parents=True)
    (root / "2020" / "07" / "report.eml").write_bytes(
        b"From: Raymond <raymond@x>\n"
        b"To: team@x\n"
        b"Cc: boss@x\n"
        b"Subject: Status\n"
        b"Date: Wed, 22 Jul 2020 16:39:37 +0000\n"
        b'Content-Type: text/plain; charset="utf-8"\n'
        b"\n"
        b"All systems nominal.\n"
    )
    (root / "2020" / "07" / "notes.txt").write_text("meeting notes", "utf-8")
    (root / "readme.txt").write_text("top level readme", "utf-8")
    (root / "photo.jpg").write_bytes(b"\xff\xd8\xff\xe0binary")
    return root
