"""Layout migration between the plain row table and the FTS5-backed table.

The migration is staged so that no step can lose the only copy of the
data:

1. Copy every row (with its rowid) into messages_backup
2. Verify the copy against the live table
3. Drop the live table (and the FTS index, if any)
4. Create the target layout and reload rows from the backup in rowid order
5. Verify the reload against the backup, drop the backup

All five steps run in one exclusive transaction. Any failure rolls the
transaction back, which leaves the original table exactly as it was.
VACUUM runs after the commit to reclaim the freed pages.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass

from ..errors import MigrationAborted
from .schema import (
    LAYOUT_FTS,
    LAYOUT_ROW,
    MESSAGE_COLUMNS,
    detect_layout,
    fts_table_sql,
    fts_triggers_sql,
    layout_sql,
    messages_table_sql,
    optimize_fts_index,
    split_sql,
)

logger = logging.getLogger(__name__)

BACKUP_TABLE = "messages_backup"

_COLUMNS = "rowid, " + ", ".join(MESSAGE_COLUMNS)


@dataclass
class MigrationReport:
    """Result of a layout migration."""

    source: str
    target: str
    rows: int
    elapsed: float

    @property
    def changed(self) -> bool:
        return self.source != self.target


def migrate(
    conn: sqlite3.Connection,
    target: str,
    tokenizer: str | None = None,
) -> MigrationReport:
    """
    Convert the messages table to another physical layout.

    Row ids, row count and every column value are preserved. The caller
    must hold exclusive access to the database for the duration (see
    IndexManager.migrate).

    Args:
        conn: Database connection
        target: "fts" or "row"
        tokenizer: FTS5 tokenizer for the fts layout (config default if None)

    Returns:
        MigrationReport with the number of rows moved

    Raises:
        ValueError: If target is not a known layout
        MigrationAborted: If any step fails; the original table is intact
    """
    if target not in (LAYOUT_FTS, LAYOUT_ROW):
        raise ValueError(f"Unknown layout: {target!r}")

    start = time.monotonic()
    source = detect_layout(conn)
    if source == target:
        rows = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
        logger.info("Layout is already %s, nothing to migrate", target)
        return MigrationReport(source, target, rows, 0.0)

    logger.info("Migrating messages table: %s → %s", source, target)

    # Flush anything pending so BEGIN starts a fresh transaction
    conn.commit()
    try:
        conn.execute("BEGIN EXCLUSIVE")
    except sqlite3.OperationalError as e:
        raise MigrationAborted(f"Could not lock database: {e}") from e

    try:
        rows = _copy_to_backup(conn)
        _verify_copy(conn, "messages", BACKUP_TABLE, rows)

        sequence = _read_sequence(conn)
        _drop_live(conn, source)
        _reload(conn, target, tokenizer)
        _restore_sequence(conn, sequence)
        _verify_copy(conn, BACKUP_TABLE, "messages", rows)

        conn.execute(f"DROP TABLE {BACKUP_TABLE}")
        conn.commit()
    except MigrationAborted:
        conn.rollback()
        logger.error("Migration %s → %s aborted, rolled back", source, target)
        raise
    except sqlite3.Error as e:
        conn.rollback()
        logger.error("Migration %s → %s failed: %s", source, target, e)
        raise MigrationAborted(
            f"Migration {source} → {target} failed: {e}"
        ) from e

    try:
        conn.execute("VACUUM")
    except sqlite3.OperationalError as e:
        logger.warning("VACUUM after migration failed: %s", e)

    if target == LAYOUT_FTS:
        optimize_fts_index(conn)

    elapsed = time.monotonic() - start
    logger.info(
        "Migrated %d rows %s → %s in %.2fs", rows, source, target, elapsed
    )
    return MigrationReport(source, target, rows, elapsed)


def _copy_to_backup(conn: sqlite3.Connection) -> int:
    """Step 1: copy live rows verbatim into the backup table."""
    conn.execute(f"DROP TABLE IF EXISTS {BACKUP_TABLE}")
    conn.execute(messages_table_sql(BACKUP_TABLE))
    conn.execute(
        f"INSERT INTO {BACKUP_TABLE} ({_COLUMNS}) "
        f"SELECT {_COLUMNS} FROM messages ORDER BY rowid"
    )
    return conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]


def _verify_copy(
    conn: sqlite3.Connection, source: str, copy: str, expected: int
) -> None:
    """Check that copy holds exactly the rows of source."""
    count, rowid_sum = conn.execute(
        f"SELECT COUNT(*), COALESCE(SUM(rowid), 0) FROM {copy}"
    ).fetchone()
    src_sum = conn.execute(
        f"SELECT COALESCE(SUM(rowid), 0) FROM {source}"
    ).fetchone()[0]
    if count != expected or rowid_sum != src_sum:
        raise MigrationAborted(
            f"{copy} has {count} rows (rowid sum {rowid_sum}), "
            f"expected {expected} (rowid sum {src_sum})"
        )

    for left, right in ((source, copy), (copy, source)):
        missing = conn.execute(
            f"SELECT COUNT(*) FROM (SELECT {_COLUMNS} FROM {left} "
            f"EXCEPT SELECT {_COLUMNS} FROM {right})"
        ).fetchone()[0]
        if missing:
            raise MigrationAborted(
                f"{missing} row(s) of {left} differ in {right}"
            )


def _read_sequence(conn: sqlite3.Connection) -> int | None:
    """Return the AUTOINCREMENT high-water mark of messages, if tracked."""
    try:
        row = conn.execute(
            "SELECT seq FROM sqlite_sequence WHERE name = 'messages'"
        ).fetchone()
    except sqlite3.OperationalError:
        # No AUTOINCREMENT table in this database
        return None
    return row[0] if row else None


def _restore_sequence(conn: sqlite3.Connection, sequence: int | None) -> None:
    """Keep deleted ids from being handed out again after the reload."""
    if sequence is None:
        return
    cursor = conn.execute(
        "UPDATE sqlite_sequence SET seq = MAX(seq, ?) WHERE name = 'messages'",
        (sequence,),
    )
    if cursor.rowcount == 0:
        conn.execute(
            "INSERT INTO sqlite_sequence (name, seq) VALUES ('messages', ?)",
            (sequence,),
        )


def _drop_live(conn: sqlite3.Connection, layout: str) -> None:
    """Step 3: drop the live table. Only runs after a verified backup."""
    if layout == LAYOUT_FTS:
        for trigger in ("messages_ai", "messages_ad", "messages_au"):
            conn.execute(f"DROP TRIGGER IF EXISTS {trigger}")
        conn.execute("DROP TABLE IF EXISTS messages_fts")
    conn.execute("DROP TABLE messages")


def _reload(
    conn: sqlite3.Connection, layout: str, tokenizer: str | None
) -> None:
    """Step 4: create the target layout and bulk-load it from the backup."""
    for statement in split_sql(layout_sql(LAYOUT_ROW)):
        conn.execute(statement)

    conn.execute(
        f"INSERT INTO messages ({_COLUMNS}) "
        f"SELECT {_COLUMNS} FROM {BACKUP_TABLE} ORDER BY rowid"
    )

    if layout == LAYOUT_FTS:
        # Build the token index once after the bulk load instead of
        # row by row through the triggers
        for statement in split_sql(fts_table_sql(tokenizer) + fts_triggers_sql()):
            conn.execute(statement)
        conn.execute("INSERT INTO messages_fts(messages_fts) VALUES('rebuild')")
        conn.execute(
            "INSERT INTO messages_fts(messages_fts, rank) "
            "VALUES('integrity-check', 1)"
        )
