"""Incremental message index with structured and full-text queries.

This module provides:
- IndexManager: Main interface for indexing, querying and migrating
- RecordStore / StalenessOracle: The incremental indexing core
- QueryEngine: Field-scoped query evaluation over either layout
- migrate.migrate(): Lossless conversion between the row and FTS layouts
"""

from .folders import FolderConfig, FolderStore
from .manager import IndexManager, IndexStats
from .migrate import MigrationReport
from .search import QueryEngine, SearchHit
from .staleness import Outcome, StalenessCheck, StalenessOracle
from .store import MessageRecord, RecordStatus, RecordStore
from .sync import SyncResult, sync_folders

__all__ = [
    "FolderConfig",
    "FolderStore",
    "IndexManager",
    "IndexStats",
    "MessageRecord",
    "MigrationReport",
    "Outcome",
    "QueryEngine",
    "RecordStatus",
    "RecordStore",
    "SearchHit",
    "StalenessCheck",
    "StalenessOracle",
    "SyncResult",
    "sync_folders",
]
