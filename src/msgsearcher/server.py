"""
msgsearcher MCP Server

Exposes the message index to MCP clients.

TOOLS (4 total):
- search(query, ...) - Field-scoped structured / full-text search
- count(query) - Number of matching messages
- list_folders() - Watched folders
- index_status() - Index statistics
"""

from __future__ import annotations

import asyncio
from typing import Literal

from typing_extensions import TypedDict

from fastmcp import FastMCP

from .config import get_search_limit

mcp = FastMCP("msgsearcher")


# ========== Response Type Definitions ==========


class MessageSummary(TypedDict):
    """One search hit (display row)."""

    id: int
    senddate: str
    subject: str
    sender: str
    recipient: str
    cc: str
    size: int
    path: str
    filename: str
    folder: str


class Folder(TypedDict):
    """A watched folder."""

    id: int
    name: str
    path: str
    extensions: list[str]
    include_subfolders: bool


class IndexStatus(TypedDict):
    """Index statistics."""

    location: str
    messages: int
    folders: int
    layout: str
    db_size_mb: float
    schema_version: int


# ========== Helper Functions ==========


def _get_index_manager():
    """Get the IndexManager singleton, lazily imported."""
    from .index import IndexManager

    return IndexManager.get_instance()


# ========== Tools ==========


@mcp.tool
async def search(
    query: str,
    order_by: str | None = None,
    order: Literal["asc", "desc"] = "desc",
    limit: int | None = None,
) -> list[MessageSummary]:
    """
    Search indexed messages.

    Query language:
    - Bare terms search every text field: invoice "quarterly report"
    - Field scope: subject:(meat consumable), {sender recipient}:ray*
    - Prefix: a trailing * (sender:ray*)
    - Substring / wildcard: filename~report, path~"Outlook:2020:*"
    - Comparison: size>100000, senddate>=2020-07-01, folder=Archive
    - Boolean: AND (implicit), OR, NOT, parentheses

    Args:
        query: Query expression (empty string matches everything)
        order_by: Field to sort on (e.g. "senddate"); storage order if None
        order: Sort direction when order_by is given
        limit: Maximum results (default: MSGSEARCHER_SEARCH_LIMIT, 20)

    Returns:
        List of matching messages.

    Examples:
        >>> search('subject:("meat")', order_by="senddate")
        >>> search("from:ray* AND date>=2020-01-01", limit=5)
    """
    manager = _get_index_manager()
    hits = await asyncio.to_thread(
        manager.search,
        query,
        order_by=order_by,
        descending=order == "desc",
        limit=limit or get_search_limit(),
    )
    return [hit.display() for hit in hits]


@mcp.tool
async def count(query: str) -> int:
    """
    Count indexed messages matching a query.

    Uses the same query language as search(). An empty query counts
    every message.
    """
    manager = _get_index_manager()
    return await asyncio.to_thread(manager.count, query)


@mcp.tool
async def list_folders() -> list[Folder]:
    """
    List the watched folders that feed the index.

    Returns:
        List of folder dictionaries; "name" is what folder= queries match.
    """
    manager = _get_index_manager()
    folders = await asyncio.to_thread(manager.list_folders)
    return [
        {
            "id": f.rowid,
            "name": f.name,
            "path": f.path,
            "extensions": sorted(f.extensions),
            "include_subfolders": f.include_subfolders,
        }
        for f in folders
    ]


@mcp.tool
async def index_status() -> IndexStatus:
    """Get index statistics: message and folder counts, layout, size."""
    manager = _get_index_manager()
    stats = await asyncio.to_thread(manager.get_stats)
    return {
        "location": str(manager.db_path),
        "messages": stats.message_count,
        "folders": stats.folder_count,
        "layout": stats.layout,
        "db_size_mb": round(stats.db_size_mb, 2),
        "schema_version": stats.schema_version,
    }


if __name__ == "__main__":
    mcp.run()
