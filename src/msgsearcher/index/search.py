"""Query evaluation over the message index.

Provides:
- QueryEngine.search(): Ordered (MessageRecord, FolderConfig) hits
- QueryEngine.count(): Scalar count for the same predicate language
- SearchHit.display(): The display row used by the CLI and MCP server

Every query joins messages with folders on the folderRef, so records
whose folder is unknown never appear in results.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone

from ..errors import QuerySyntaxError
from .folders import FolderConfig
from .query import compile_where, parse_query, resolve_field
from .schema import MESSAGE_COLUMNS, detect_layout
from .store import MessageRecord

_SELECT = (
    "SELECT m.rowid AS rowid, "
    + ", ".join(f"m.{col} AS {col}" for col in MESSAGE_COLUMNS)
    + ", fld.rowid AS folder_rowid, fld.name AS folder_name,"
    " fld.path AS folder_path, fld.extensions AS folder_extensions,"
    " fld.include_subfolders AS folder_include_subfolders"
    " FROM messages m JOIN folders fld ON fld.rowid = m.fld_rowid"
)

_COUNT = (
    "SELECT COUNT(*) FROM messages m JOIN folders fld ON fld.rowid = m.fld_rowid"
)


def format_epoch(value: int | None) -> str:
    """Render epoch seconds as an ISO-8601 UTC string ("" for None)."""
    if value is None:
        return ""
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    except (OSError, OverflowError, ValueError):
        return str(value)


@dataclass
class SearchHit:
    """A matching record and the folder it belongs to."""

    id: int
    record: MessageRecord
    folder: FolderConfig

    def display(self) -> dict:
        """Return the display row for presentation surfaces."""
        record = self.record
        return {
            "id": self.id,
            "senddate": format_epoch(record.send_date),
            "subject": record.subject,
            "sender": record.sender,
            "recipient": record.recipient,
            "cc": record.cc,
            "size": record.size,
            "path": record.path,
            "filename": record.filename,
            "folder": self.folder.name,
        }


def _row_to_hit(row: sqlite3.Row) -> SearchHit:
    folder = FolderConfig(
        name=row["folder_name"],
        path=row["folder_path"],
        extensions=frozenset((row["folder_extensions"] or "").split(",")),
        include_subfolders=bool(row["folder_include_subfolders"]),
        rowid=row["folder_rowid"],
    )
    return SearchHit(row["rowid"], MessageRecord.from_row(row), folder)


def order_clause(order_by: str | None, descending: bool = True) -> str:
    """
    Build the ORDER BY clause. No field means storage (rowid) order.

    Raises:
        QuerySyntaxError: Unknown or unsortable field
    """
    if order_by is None:
        return " ORDER BY m.rowid"
    field = resolve_field(order_by)
    if not field.sortable:
        raise QuerySyntaxError(f"Cannot order by {field.name!r}")
    direction = "DESC" if descending else "ASC"
    # rowid keeps ties in storage order
    return f" ORDER BY {field.sql} {direction}, m.rowid"


class QueryEngine:
    """Evaluates query expressions against one database connection."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def _where(self, query: str | None) -> tuple[str, list]:
        node = parse_query(query)
        return compile_where(node, detect_layout(self._conn))

    def search(
        self,
        query: str | None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[SearchHit]:
        """
        Run a query and return the matching records.

        Args:
            query: Query expression (empty matches everything)
            order_by: Field to sort on (storage order if None)
            descending: Sort direction when order_by is given
            limit: Maximum number of hits (all if None)

        Returns:
            List of SearchHit in the requested order

        Raises:
            QuerySyntaxError: Malformed query or bad order/limit
            UnsupportedFieldOperation: Full-text on a non-indexed field,
                or any full-text clause against the row layout
        """
        if limit is not None and limit <= 0:
            raise QuerySyntaxError(f"Limit must be positive, got {limit}")

        where, params = self._where(query)
        sql = f"{_SELECT} WHERE {where}" + order_clause(order_by, descending)
        if limit is not None:
            sql += " LIMIT ?"
            # clamp to the SQLite INTEGER range
            params.append(min(limit, 2**63 - 1))

        cursor = self._conn.execute(sql, params)
        return [_row_to_hit(row) for row in cursor]

    def count(self, query: str | None) -> int:
        """Count the records matching a query."""
        where, params = self._where(query)
        cursor = self._conn.execute(f"{_COUNT} WHERE {where}", params)
        return cursor.fetchone()[0]
