"""IndexManager - Central interface for the message index.

Provides:
- sync(): Incremental indexing of every watched folder
- search() / count(): Query evaluation
- migrate(): Switch between the row and FTS layouts
- get_stats(): Index statistics for status reporting

Thread Safety:
- get_instance() uses a class-level lock
- One writer connection, serialized by a write mutex
- Queries use one reader connection per thread (WAL lets them run
  alongside the writer)
- migrate() takes the exclusive side of a readers/writer lock, so no
  query or write runs while the table is being rebuilt
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from ..config import get_index_path, get_tokenizer
from .folders import FolderConfig, FolderStore
from .migrate import MigrationReport, migrate
from .schema import create_connection, detect_layout, init_database
from .search import QueryEngine, SearchHit
from .store import RecordStore
from .sync import SyncResult, sync_folders

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)


@dataclass
class IndexStats:
    """Statistics about the message index."""

    message_count: int
    folder_count: int
    layout: str
    db_size_mb: float
    schema_version: int


class ReadWriteLock:
    """
    Many shared holders or one exclusive holder.

    Waiting exclusive requests block new shared holders so a migration
    cannot be starved by a steady stream of queries.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def shared(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class IndexManager:
    """
    Owns the index database and its connections.

    The index is stored at ~/.msgsearcher/index.db by default.
    Use environment variables to customize (see msgsearcher.config):
    - MSGSEARCHER_INDEX_PATH: Database location
    - MSGSEARCHER_LAYOUT: Layout for a new database
    - MSGSEARCHER_BATCH_SIZE: Writes per transaction while indexing
    """

    _instance: IndexManager | None = None
    _instance_lock = threading.Lock()

    def __init__(self, db_path: Path | None = None, layout: str | None = None):
        """
        Initialize the IndexManager. The database is opened lazily.

        Args:
            db_path: Custom database path (uses config default if None)
            layout: Layout for a new database (config default if None)
        """
        self._db_path = db_path or get_index_path()
        self._layout = layout
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._rw = ReadWriteLock()
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []

    @classmethod
    def get_instance(cls) -> IndexManager:
        """Get the singleton IndexManager instance (thread-safe)."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = IndexManager()
            return cls._instance

    def __enter__(self) -> IndexManager:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def db_path(self) -> Path:
        """Get the database file path."""
        return self._db_path

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create the writer connection (thread-safe)."""
        with self._conn_lock:
            if self._conn is None:
                self._conn = init_database(self._db_path, self._layout)
            return self._conn

    def _reader(self) -> sqlite3.Connection:
        """Get this thread's reader connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            # Schema must exist before a reader opens the file
            self._get_conn()
            conn = create_connection(self._db_path)
            self._local.conn = conn
            with self._conn_lock:
                self._readers.append(conn)
        return conn

    def close(self) -> None:
        """Close every connection."""
        with self._conn_lock:
            for conn in self._readers:
                conn.close()
            self._readers.clear()
            if self._conn is not None:
                self._conn.close()
                self._conn = None
        self._local = threading.local()

    def has_index(self) -> bool:
        """Check if an index database exists."""
        return self._db_path.exists()

    # ─────────────────────────────────────────────────────────────────
    # Folders
    # ─────────────────────────────────────────────────────────────────

    def list_folders(self) -> list[FolderConfig]:
        with self._rw.shared():
            return FolderStore(self._reader()).list_folders()

    def add_folder(
        self,
        name: str,
        path: str | Path,
        extensions: list[str] | None = None,
        include_subfolders: bool = True,
    ) -> FolderConfig:
        """Register a watched folder and return it with its rowid."""
        folder = FolderConfig(
            name=name,
            path=str(Path(path).expanduser()),
            extensions=frozenset(extensions or ()),
            include_subfolders=include_subfolders,
        )
        with self._rw.shared(), self._write_lock:
            rowid = FolderStore(self._get_conn()).add(folder)
        logger.info("Added folder %s (%s) as %d", name, folder.path, rowid)
        return FolderConfig(
            name=folder.name,
            path=folder.path,
            extensions=folder.extensions,
            include_subfolders=folder.include_subfolders,
            rowid=rowid,
        )

    # ─────────────────────────────────────────────────────────────────
    # Indexing
    # ─────────────────────────────────────────────────────────────────

    def sync(
        self,
        progress_callback: Callable[[int, int | None, str], None] | None = None,
    ) -> SyncResult:
        """
        Index every watched folder incrementally.

        Args:
            progress_callback: Optional callback(current, total, message)

        Returns:
            Combined SyncResult for all folders
        """
        with self._rw.shared(), self._write_lock:
            conn = self._get_conn()
            folders = FolderStore(conn).list_folders()
            return sync_folders(
                RecordStore(conn), folders, progress_callback=progress_callback
            )

    def migrate(self, target: str) -> MigrationReport:
        """
        Convert the index to another layout ("fts" or "row").

        Blocks until all running queries and writes have finished, and
        holds off new ones until the migration is done.
        """
        with self._rw.exclusive(), self._write_lock:
            return migrate(self._get_conn(), target, get_tokenizer())

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    def search(
        self,
        query: str | None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[SearchHit]:
        """Run a query (see QueryEngine.search)."""
        with self._rw.shared():
            return QueryEngine(self._reader()).search(
                query, order_by=order_by, descending=descending, limit=limit
            )

    def count(self, query: str | None) -> int:
        """Count records matching a query."""
        with self._rw.shared():
            return QueryEngine(self._reader()).count(query)

    def get_stats(self) -> IndexStats:
        """
        Get index statistics.

        Returns:
            IndexStats with counts, layout, size and schema version
        """
        with self._rw.shared():
            conn = self._reader()
            message_count = RecordStore(conn).count()
            folder_count = conn.execute("SELECT COUNT(*) FROM folders").fetchone()[0]
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            layout = detect_layout(conn)

        db_size_mb = 0.0
        if self._db_path.exists():
            db_size_mb = self._db_path.stat().st_size / (1024 * 1024)

        return IndexStats(
            message_count=message_count,
            folder_count=folder_count,
            layout=layout,
            db_size_mb=db_size_mb,
            schema_version=row[0] if row else 0,
        )
