"""Record store for indexed messages.

Provides:
- MessageRecord: The unit of indexing (one file)
- RecordStore: insert / replace / lookup / delete over the messages table

Every write keeps the dedup rule: at most one live row per
(filename, path). Identity lookups always use the plain B-tree index on
the messages table, never the token index, so punctuation in file names
cannot produce false matches.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING

from ..errors import IdentityLookupError, RecordNotFoundError
from .schema import (
    INSERT_MESSAGE_SQL,
    MESSAGE_COLUMNS,
    UPDATE_MESSAGE_SQL,
    detect_layout,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

_FORBIDDEN_IDENTITY_CHARS = ("/", "\\", "\x00")


class RecordStatus(IntEnum):
    """Processing status stored with each record."""

    OK = 0
    EMPTY = 1
    UNSUPPORTED = 2
    FAILED = 3


def validate_identity(filename: str, path: str) -> None:
    """
    Reject identities that cannot be stored or looked up exactly.

    Raises:
        IdentityLookupError: If filename is empty, or either part contains
            a path separator or NUL (paths are stored ':'-separated)
    """
    if not isinstance(filename, str) or not isinstance(path, str):
        raise IdentityLookupError("filename and path must be strings")
    if not filename:
        raise IdentityLookupError("filename must not be empty")
    for label, value in (("filename", filename), ("path", path)):
        for char in _FORBIDDEN_IDENTITY_CHARS:
            if char in value:
                raise IdentityLookupError(
                    f"{label} {value!r} contains forbidden character {char!r}"
                )


def encode_attachments(names: tuple[str, ...] | list[str]) -> str:
    """Serialize attachment names for the attachments column."""
    return json.dumps(list(names), ensure_ascii=False)


def decode_attachments(value: str | None) -> tuple[str, ...]:
    """Parse the attachments column; non-JSON legacy text is one name."""
    if not value:
        return ()
    try:
        names = json.loads(value)
    except ValueError:
        return (value,)
    if isinstance(names, list):
        return tuple(str(name) for name in names)
    return (value,)


@dataclass
class MessageRecord:
    """One indexed file: identity, fingerprint, and extracted content."""

    filename: str
    path: str
    size: int = 0
    modified_time: int = 0
    contents: str = ""
    subject: str = ""
    sender: str = ""
    recipient: str = ""
    cc: str = ""
    status: int = RecordStatus.OK
    send_date: int | None = None
    attachments: tuple[str, ...] = ()
    folder_ref: int | None = None

    @property
    def identity(self) -> tuple[str, str]:
        return (self.filename, self.path)

    def to_row(self) -> tuple:
        """Return column values in MESSAGE_COLUMNS order."""
        return (
            self.folder_ref,
            self.filename,
            self.path,
            self.size,
            self.modified_time,
            self.contents,
            int(self.status),
            self.subject,
            self.sender,
            self.recipient,
            self.cc,
            self.send_date,
            encode_attachments(self.attachments),
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> MessageRecord:
        """Build a record from a messages row."""
        return cls(
            filename=row["filename"],
            path=row["path"],
            size=row["size"] or 0,
            modified_time=row["time"] or 0,
            contents=row["contents"] or "",
            subject=row["subject"] or "",
            sender=row["sender"] or "",
            recipient=row["recipient"] or "",
            cc=row["cc"] or "",
            status=row["status"] or 0,
            send_date=row["senddate"],
            attachments=decode_attachments(row["attachments"]),
            folder_ref=row["fld_rowid"],
        )


_SELECT_RECORD = "SELECT rowid, " + ", ".join(MESSAGE_COLUMNS) + " FROM messages"


class RecordStore:
    """
    Durable table of message records.

    Writes commit immediately unless they run inside batch(), in which
    case the whole batch commits or rolls back together.

    Not thread-safe on its own: the indexing path is a single writer
    (see IndexManager).
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._batch_depth = 0

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    @property
    def layout(self) -> str:
        """Physical layout of the messages table ("fts" or "row")."""
        return detect_layout(self._conn)

    @contextmanager
    def batch(self) -> Iterator[RecordStore]:
        """Group writes into one transaction."""
        self._batch_depth += 1
        ok = False
        try:
            yield self
            ok = True
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                if ok:
                    self._conn.commit()
                else:
                    self._conn.rollback()

    @contextmanager
    def _write(self) -> Iterator[None]:
        ok = False
        try:
            yield
            ok = True
        finally:
            if self._batch_depth == 0:
                if ok:
                    self._conn.commit()
                else:
                    self._conn.rollback()

    # ─────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────

    def insert(self, record: MessageRecord) -> int:
        """
        Append a record and return its id.

        If a live record already exists for the same (filename, path) it
        is superseded in place instead, and its id is returned.
        """
        validate_identity(record.filename, record.path)
        existing = self.lookup_identity(record.filename, record.path)
        if existing:
            record_id = existing[-1]["rowid"]
            logger.debug(
                "Insert of existing identity %s/%s; replacing id %d",
                record.path,
                record.filename,
                record_id,
            )
            self.replace(record_id, record)
            return record_id

        with self._write():
            cursor = self._conn.execute(INSERT_MESSAGE_SQL, record.to_row())
        return cursor.lastrowid

    def replace(self, record_id: int, record: MessageRecord) -> None:
        """
        Supersede the record at record_id with new values, keeping the id.

        Any other rows carrying the new identity are removed so that only
        one live record remains for it.

        Raises:
            RecordNotFoundError: If record_id does not exist
        """
        validate_identity(record.filename, record.path)
        with self._write():
            cursor = self._conn.execute(
                UPDATE_MESSAGE_SQL, (*record.to_row(), record_id)
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(f"No record with id {record_id}")
            cursor = self._conn.execute(
                "DELETE FROM messages "
                "WHERE filename = ? AND path = ? AND rowid != ?",
                (record.filename, record.path, record_id),
            )
            if cursor.rowcount:
                logger.warning(
                    "Removed %d duplicate record(s) for %s/%s",
                    cursor.rowcount,
                    record.path,
                    record.filename,
                )

    def delete_by_identity(self, filename: str, path: str) -> int:
        """Delete every record for (filename, path); return rows removed."""
        validate_identity(filename, path)
        with self._write():
            cursor = self._conn.execute(
                "DELETE FROM messages WHERE filename = ? AND path = ?",
                (filename, path),
            )
        return cursor.rowcount

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    def lookup_identity(self, filename: str, path: str) -> list[sqlite3.Row]:
        """
        Return (rowid, size, time) for every row with this identity.

        Rows are ordered by rowid, so the most recently inserted is last.
        """
        validate_identity(filename, path)
        cursor = self._conn.execute(
            "SELECT rowid, size, time FROM messages "
            "WHERE filename = ? AND path = ? ORDER BY rowid",
            (filename, path),
        )
        return cursor.fetchall()

    def get(self, record_id: int) -> MessageRecord | None:
        """Return the record with the given id, or None."""
        cursor = self._conn.execute(
            _SELECT_RECORD + " WHERE rowid = ?", (record_id,)
        )
        row = cursor.fetchone()
        return MessageRecord.from_row(row) if row else None

    def get_by_identity(
        self, filename: str, path: str
    ) -> tuple[int, MessageRecord] | None:
        """Exact lookup of the current record for (filename, path)."""
        validate_identity(filename, path)
        cursor = self._conn.execute(
            _SELECT_RECORD
            + " WHERE filename = ? AND path = ? ORDER BY rowid DESC LIMIT 1",
            (filename, path),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return row["rowid"], MessageRecord.from_row(row)

    def identities_for_folder(self, folder_ref: int) -> set[tuple[str, str]]:
        """Return every (filename, path) stored for a folder."""
        cursor = self._conn.execute(
            "SELECT filename, path FROM messages WHERE fld_rowid = ?",
            (folder_ref,),
        )
        return {(row["filename"], row["path"]) for row in cursor}

    def count(self) -> int:
        """Return the number of records."""
        return self._conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
