"""SQLite schema for the message index.

The schema uses:
- folders: Watched-folder definitions (FolderConfig); rowid is the folderRef
- messages: One row per indexed file, structured and text columns
- messages_fts: FTS5 external-content index over the text columns
  (only present in the "fts" layout)

Two physical layouts share the same logical column set:
- "row": messages only, nothing is tokenized
- "fts": messages + messages_fts, kept in sync by triggers

IMPORTANT: (filename, path) is the identity of a message, but it is NOT a
UNIQUE constraint. Databases written by the original tool can carry
historical duplicates, and layout migration must copy them verbatim. The
record store enforces the dedup rule on every write instead.
"""

import logging
import os
import sqlite3
from pathlib import Path

from ..config import get_default_layout, get_tokenizer

logger = logging.getLogger(__name__)

# Current schema version for migrations
SCHEMA_VERSION = 2  # v1 = the original tool's f/fld tables

LAYOUT_FTS = "fts"
LAYOUT_ROW = "row"

# Default PRAGMAs for all connections (centralized to avoid drift)
DEFAULT_PRAGMAS = {
    "journal_mode": "WAL",  # Better concurrent read performance
    "synchronous": "NORMAL",  # Good balance of safety and speed
    "busy_timeout": 5000,  # Wait up to 5s for locks
}

# Logical column order of the messages table (matches the original tool)
MESSAGE_COLUMNS = (
    "fld_rowid",
    "filename",
    "path",
    "size",
    "time",
    "contents",
    "status",
    "subject",
    "sender",
    "recipient",
    "cc",
    "senddate",
    "attachments",
)

# Columns that get a token index in the "fts" layout
FTS_COLUMNS = (
    "filename",
    "path",
    "subject",
    "sender",
    "recipient",
    "cc",
    "contents",
)

_COLUMN_LIST = ", ".join(MESSAGE_COLUMNS)

INSERT_MESSAGE_SQL = (
    f"INSERT INTO messages ({_COLUMN_LIST}) "
    f"VALUES ({', '.join('?' for _ in MESSAGE_COLUMNS)})"
)

UPDATE_MESSAGE_SQL = (
    "UPDATE messages SET "
    + ", ".join(f"{col} = ?" for col in MESSAGE_COLUMNS)
    + " WHERE rowid = ?"
)


def messages_table_sql(table: str = "messages") -> str:
    """Return the CREATE TABLE statement for a messages-shaped table."""
    return f"""
CREATE TABLE IF NOT EXISTS {table} (
    rowid INTEGER PRIMARY KEY AUTOINCREMENT,
    fld_rowid INTEGER,               -- folderRef -> folders.rowid
    filename TEXT NOT NULL,
    path TEXT NOT NULL,              -- ':'-separated, relative to the folder
    size INTEGER,                    -- bytes
    time INTEGER,                    -- modification time, epoch seconds
    contents TEXT,
    status INTEGER DEFAULT 0,
    subject TEXT,
    sender TEXT,
    recipient TEXT,
    cc TEXT,
    senddate INTEGER,                -- epoch seconds
    attachments TEXT                 -- JSON array of names
);
"""


def _messages_indexes_sql() -> str:
    return """
CREATE INDEX IF NOT EXISTS idx_messages_identity
    ON messages(filename, path);
CREATE INDEX IF NOT EXISTS idx_messages_senddate
    ON messages(senddate);
CREATE INDEX IF NOT EXISTS idx_messages_sender_senddate
    ON messages(sender, senddate);
CREATE INDEX IF NOT EXISTS idx_messages_folder
    ON messages(fld_rowid);
"""


def fts_table_sql(tokenizer: str | None = None) -> str:
    """Return the FTS5 table definition for the "fts" layout."""
    tokenizer = tokenizer or get_tokenizer()
    safe_tokenizer = tokenizer.replace("'", "''")
    return f"""
-- FTS5 index (external content - original values stay in messages)
CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
    {', '.join(FTS_COLUMNS)},
    content='messages',
    content_rowid='rowid',
    tokenize='{safe_tokenizer}'
);
"""


def fts_triggers_sql() -> str:
    """Return the triggers keeping messages_fts in step with messages."""
    cols = ", ".join(FTS_COLUMNS)
    new_vals = ", ".join(f"new.{c}" for c in FTS_COLUMNS)
    old_vals = ", ".join(f"old.{c}" for c in FTS_COLUMNS)
    return f"""
CREATE TRIGGER IF NOT EXISTS messages_ai AFTER INSERT ON messages BEGIN
    INSERT INTO messages_fts(rowid, {cols})
    VALUES (new.rowid, {new_vals});
END;

CREATE TRIGGER IF NOT EXISTS messages_ad AFTER DELETE ON messages BEGIN
    INSERT INTO messages_fts(messages_fts, rowid, {cols})
    VALUES ('delete', old.rowid, {old_vals});
END;

CREATE TRIGGER IF NOT EXISTS messages_au AFTER UPDATE ON messages BEGIN
    INSERT INTO messages_fts(messages_fts, rowid, {cols})
    VALUES ('delete', old.rowid, {old_vals});
    INSERT INTO messages_fts(rowid, {cols})
    VALUES (new.rowid, {new_vals});
END;
"""


def layout_sql(layout: str, tokenizer: str | None = None) -> str:
    """Return the SQL creating the messages table for a physical layout."""
    if layout not in (LAYOUT_FTS, LAYOUT_ROW):
        raise ValueError(f"Unknown layout: {layout!r}")
    sql = messages_table_sql() + _messages_indexes_sql()
    if layout == LAYOUT_FTS:
        sql += fts_table_sql(tokenizer) + fts_triggers_sql()
    return sql


def get_schema_sql(layout: str = LAYOUT_FTS, tokenizer: str | None = None) -> str:
    """Return the complete schema creation SQL."""
    return (
        """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Watched folders (read-only to the index core)
CREATE TABLE IF NOT EXISTS folders (
    rowid INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    path TEXT NOT NULL,
    extensions TEXT DEFAULT '',      -- comma-separated, lower-case
    include_subfolders INTEGER DEFAULT 1
);
"""
        + layout_sql(layout, tokenizer)
    )


def detect_layout(conn: sqlite3.Connection) -> str:
    """Return the physical layout of the messages table."""
    cursor = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name='messages_fts'"
    )
    return LAYOUT_FTS if cursor.fetchone() is not None else LAYOUT_ROW


def create_connection(db_path: Path) -> sqlite3.Connection:
    """
    Create a database connection with standard configuration.

    This factory ensures consistent PRAGMA settings across all connection
    points (writer, per-thread readers) to prevent configuration drift.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        Configured connection with WAL mode, busy timeout, and Row factory
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row

    # Apply standard PRAGMAs
    for pragma, value in DEFAULT_PRAGMAS.items():
        conn.execute(f"PRAGMA {pragma}={value}")

    return conn


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    cursor = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE name = ? AND type = 'table'",
        (name,),
    )
    return cursor.fetchone() is not None


def init_database(db_path: Path, layout: str | None = None) -> sqlite3.Connection:
    """
    Initialize the database with schema, creating parent directories if needed.

    Args:
        db_path: Path to the SQLite database file
        layout: Layout for a fresh database (config default if None).
            Ignored for existing databases; use migrate() to change it.

    Returns:
        Open database connection

    Security:
        Sets file permissions to 0600 (owner read/write only) on new databases
        to protect message content from other users on shared systems.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    is_new_db = not db_path.exists()

    conn = create_connection(db_path)

    # Must be done after sqlite3.connect() creates the file
    if is_new_db:
        try:
            os.chmod(db_path, 0o600)
            logger.debug("Set secure permissions (0600) on %s", db_path)
        except OSError as e:
            logger.warning(
                "Could not set secure permissions on %s: %s", db_path, e
            )

    if not _table_exists(conn, "schema_version"):
        if _table_exists(conn, "f"):
            # Database written by the original tool
            _run_migrations(conn, 1, SCHEMA_VERSION)
        else:
            layout = layout or get_default_layout()
            logger.info(
                "Creating fresh database schema (version %d, %s layout)",
                SCHEMA_VERSION,
                layout,
            )
            conn.executescript(get_schema_sql(layout))
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
    else:
        cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
        row = cursor.fetchone()
        current_version = row[0] if row else 0

        if current_version < SCHEMA_VERSION:
            logger.info(
                "Migrating database from version %d to %d",
                current_version,
                SCHEMA_VERSION,
            )
            _run_migrations(conn, current_version, SCHEMA_VERSION)

    return conn


def _run_migrations(
    conn: sqlite3.Connection, from_version: int, to_version: int
) -> None:
    """
    Run schema migrations.

    Args:
        conn: Database connection
        from_version: Current schema version
        to_version: Target schema version
    """
    if from_version < 2:
        # v1 -> v2: adopt the original tool's tables. f keeps its rowids
        # (folder joins and saved result sets refer to them) and lands in
        # the plain row layout; run 'msgsearcher migrate fts' afterwards.
        logger.info("Migrating schema v1→v2: adopting legacy f/fld tables")
        conn.commit()
        conn.execute("BEGIN IMMEDIATE")
        try:
            for statement in split_sql(get_schema_sql(LAYOUT_ROW)):
                conn.execute(statement)
            if _table_exists(conn, "fld"):
                conn.execute(
                    "INSERT INTO folders "
                    "(rowid, name, path, extensions, include_subfolders) "
                    "SELECT rowid, name, path, COALESCE(extensions, ''), "
                    "COALESCE(include_subfolders, 1) FROM fld ORDER BY rowid"
                )
                conn.execute("DROP TABLE fld")
            conn.execute(
                f"INSERT INTO messages (rowid, {_COLUMN_LIST}) "
                f"SELECT rowid, {_COLUMN_LIST} FROM f ORDER BY rowid"
            )
            conn.execute("DROP TABLE f")
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (1,))
        except sqlite3.Error:
            conn.rollback()
            raise

    conn.execute("UPDATE schema_version SET version = ?", (to_version,))
    conn.commit()


def split_sql(script: str) -> list[str]:
    """
    Split a schema script into single statements.

    executescript() commits any open transaction first, so DDL that has to
    run inside a caller's transaction goes through execute() one statement
    at a time. Trigger bodies contain ';' themselves, hence the use of
    sqlite3.complete_statement() rather than a plain split.
    """
    statements: list[str] = []
    buffer = ""
    for chunk in script.split(";"):
        buffer += chunk + ";"
        if sqlite3.complete_statement(buffer):
            statement = buffer.strip()
            if statement.strip(";").strip():
                statements.append(statement)
            buffer = ""
    return statements


def rebuild_fts_index(conn: sqlite3.Connection) -> None:
    """
    Rebuild the FTS index from the messages table.

    Use this after bulk inserts without triggers or to fix corruption.
    """
    conn.execute("INSERT INTO messages_fts(messages_fts) VALUES('rebuild')")
    conn.commit()


def optimize_fts_index(conn: sqlite3.Connection) -> None:
    """
    Optimize the FTS index for better query performance.

    Call periodically after many insertions.
    """
    conn.execute("INSERT INTO messages_fts(messages_fts) VALUES('optimize')")
    conn.commit()
