"""msgsearcher - Incremental search index for exported message archives.

Features:
- Re-indexes only files whose size or modification time changed
- Structured and FTS5 full-text queries over filename, path, sender,
  subject, recipients, body and send date
- Lossless migration between a plain row table and an FTS5 index

Usage:
    msgsearcher folders add NAME PATH   # Watch a folder
    msgsearcher index                   # Index all watched folders
    msgsearcher search 'subject:(meat)' # Query the index
    msgsearcher                         # Run MCP server (default)
"""

from .cli import main
from .server import mcp

__all__ = ["main", "mcp"]
