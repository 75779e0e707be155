"""Command-line interface for msgsearcher.

Provides commands for:
- folders add / folders list: Manage watched folders
- index: Incrementally index every watched folder
- status: Show index statistics
- search / count: Query the index
- migrate: Switch between the row and FTS layouts
- serve: Run the MCP server (default)

Usage:
    msgsearcher                                  # Run MCP server (default)
    msgsearcher folders add Outlook ~/export --ext eml,txt
    msgsearcher index                            # Index changed files
    msgsearcher search 'subject:(meat) sender:ray*' --order-by senddate
    msgsearcher count 'folder=Outlook'
    msgsearcher migrate fts                      # Enable full-text search
"""

import json
import logging
import sqlite3
import sys
import time
from typing import Annotated, Literal, NoReturn

import cyclopts

from .config import get_index_path, get_search_limit
from .errors import MsgSearcherError

app = cyclopts.App(
    name="msgsearcher",
    help="Incremental search index for exported message archives.",
)

folders_app = cyclopts.App(name="folders", help="Manage watched folders.")
app.command(folders_app)

VerboseFlag = Annotated[
    bool,
    cyclopts.Parameter(name=["--verbose", "-v"], help="Enable verbose output"),
]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _fail(message: str) -> NoReturn:
    print(f"✗ {message}", file=sys.stderr)
    sys.exit(1)


def _format_size(size_mb: float) -> str:
    """Format file size for display."""
    if size_mb < 1:
        return f"{size_mb * 1024:.1f} KB"
    return f"{size_mb:.1f} MB"


def _format_time(seconds: float) -> str:
    """Format duration for display."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m {secs:.1f}s"


def _progress_bar(current: int, total: int | None, width: int = 40) -> str:
    """Create a progress bar string."""
    if total is None or total == 0:
        # Indeterminate progress
        return f"[{'=' * (current % width)}>]"

    pct = min(current / total, 1.0)
    filled = int(width * pct)
    bar = "=" * filled + "-" * (width - filled)
    return f"[{bar}] {pct * 100:.0f}%"


def _manager():
    from .index import IndexManager

    return IndexManager()


# ─────────────────────────────────────────────────────────────────────
# Folders
# ─────────────────────────────────────────────────────────────────────


@folders_app.command(name="add")
def folders_add(
    name: str,
    path: str,
    ext: Annotated[
        str,
        cyclopts.Parameter(
            name=["--ext", "-e"],
            help="Comma-separated extensions to index (all files if empty)",
        ),
    ] = "",
    no_subfolders: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--no-subfolders"], help="Only index the top directory"
        ),
    ] = False,
    verbose: VerboseFlag = False,
) -> None:
    """Register a folder to be indexed."""
    _configure_logging(verbose)
    extensions = [e for e in ext.split(",") if e.strip()]
    with _manager() as manager:
        try:
            folder = manager.add_folder(
                name, path, extensions, include_subfolders=not no_subfolders
            )
        except (MsgSearcherError, OSError, ValueError, sqlite3.Error) as e:
            _fail(f"Could not add folder: {e}")
    print(f"✓ Added folder {folder.name} ({folder.path}) as #{folder.rowid}")


@folders_app.command(name="list")
def folders_list(verbose: VerboseFlag = False) -> None:
    """List watched folders."""
    _configure_logging(verbose)
    with _manager() as manager:
        folders = manager.list_folders()

    if not folders:
        print("No folders. Add one with 'msgsearcher folders add NAME PATH'.")
        return
    for folder in folders:
        extensions = ",".join(sorted(folder.extensions)) or "*"
        recurse = "" if folder.include_subfolders else " (top level only)"
        print(
            f"#{folder.rowid:<4} {folder.name:<20} {folder.path}  "
            f"[{extensions}]{recurse}"
        )


# ─────────────────────────────────────────────────────────────────────
# Indexing
# ─────────────────────────────────────────────────────────────────────


@app.command
def index(verbose: VerboseFlag = False) -> None:
    """
    Index every watched folder.

    Only files whose size or modification time changed since the last
    run are read again. Records of deleted files are removed.
    """
    _configure_logging(verbose)
    print(f"Index location: {get_index_path()}")

    start = time.time()
    last_report = start

    def progress(current: int, total: int | None, message: str) -> None:
        nonlocal last_report
        now = time.time()

        # Throttle updates to avoid spam
        if now - last_report < 0.5 and current != total:
            return
        last_report = now
        print(f"\r{_progress_bar(current, total)} {message}", end="", flush=True)

    with _manager() as manager:
        try:
            result = manager.sync(progress_callback=progress if verbose else None)
        except (MsgSearcherError, OSError, sqlite3.Error) as e:
            _fail(f"Indexing failed: {e}")
        stats = manager.get_stats()

    elapsed = time.time() - start
    if verbose:
        print()  # Newline after progress

    print(
        f"✓ Indexed in {_format_time(elapsed)}: "
        f"+{result.added} added, ~{result.replaced} updated, "
        f"-{result.deleted} removed, {result.unchanged} unchanged"
    )
    if result.errors:
        print(f"  {result.errors} file(s) could not be read (see --verbose)")
    print(f"  Messages: {stats.message_count:,}")
    print(f"  Database size: {_format_size(stats.db_size_mb)}")


@app.command
def status(verbose: VerboseFlag = False) -> None:
    """
    Show index statistics.

    Displays:
    - Message count and folder count
    - Table layout (fts or row)
    - Database file size
    """
    _configure_logging(verbose)
    with _manager() as manager:
        if not manager.has_index():
            print("No index found.")
            print(f"Expected location: {get_index_path()}")
            print()
            print("Run 'msgsearcher folders add' and 'msgsearcher index'.")
            sys.exit(1)
        stats = manager.get_stats()

    print("msgsearcher Index Status")
    print("=" * 40)
    print(f"Location:     {get_index_path()}")
    print(f"Messages:     {stats.message_count:,}")
    print(f"Folders:      {stats.folder_count}")
    print(f"Layout:       {stats.layout}")
    print(f"Schema:       v{stats.schema_version}")
    print(f"Database:     {_format_size(stats.db_size_mb)}")

    if stats.layout == "row":
        print()
        print("⚠ Full-text search is off. Run 'msgsearcher migrate fts'.")


@app.command
def migrate(
    layout: Literal["fts", "row"],
    verbose: VerboseFlag = False,
) -> None:
    """
    Convert the index to another table layout.

    "fts" adds a full-text index (needed for field:(term) queries);
    "row" drops it and keeps a plain table. Record ids and values are
    preserved either way.
    """
    _configure_logging(verbose)
    with _manager() as manager:
        try:
            report = manager.migrate(layout)
        except (MsgSearcherError, sqlite3.Error) as e:
            _fail(f"Migration failed, index left unchanged: {e}")

    if not report.changed:
        print(f"Index already uses the {layout} layout.")
        return
    print(
        f"✓ Migrated {report.rows:,} messages {report.source} → {report.target} "
        f"in {_format_time(report.elapsed)}"
    )


# ─────────────────────────────────────────────────────────────────────
# Queries
# ─────────────────────────────────────────────────────────────────────


@app.command
def search(
    query: str,
    order_by: Annotated[
        str | None,
        cyclopts.Parameter(name=["--order-by", "-o"], help="Field to sort on"),
    ] = None,
    asc: Annotated[
        bool,
        cyclopts.Parameter(name=["--asc"], help="Sort ascending"),
    ] = False,
    limit: Annotated[
        int | None,
        cyclopts.Parameter(name=["--limit", "-n"], help="Maximum results"),
    ] = None,
    as_json: Annotated[
        bool,
        cyclopts.Parameter(name=["--json"], help="Print JSON rows"),
    ] = False,
    verbose: VerboseFlag = False,
) -> None:
    """Search the index and print matching messages."""
    _configure_logging(verbose)
    with _manager() as manager:
        try:
            hits = manager.search(
                query,
                order_by=order_by,
                descending=not asc,
                limit=limit or get_search_limit(),
            )
        except (MsgSearcherError, sqlite3.Error) as e:
            _fail(str(e))

    rows = [hit.display() for hit in hits]
    if as_json:
        print(json.dumps(rows, ensure_ascii=False, indent=2))
        return
    for row in rows:
        location = row["filename"]
        if row["path"]:
            location = f"{row['path']}:{location}"
        print(
            f"{row['id']:>7}  {row['senddate'][:19]:<19}  "
            f"{row['sender'][:30]:<30}  {row['subject'][:50]:<50}  "
            f"[{row['folder']}] {location}"
        )
    print(f"{len(rows)} result(s)", file=sys.stderr)


@app.command
def count(query: str = "", verbose: VerboseFlag = False) -> None:
    """Print the number of messages matching a query."""
    _configure_logging(verbose)
    with _manager() as manager:
        try:
            print(manager.count(query))
        except (MsgSearcherError, sqlite3.Error) as e:
            _fail(str(e))


# ─────────────────────────────────────────────────────────────────────
# Server
# ─────────────────────────────────────────────────────────────────────


@app.command
def serve(verbose: VerboseFlag = False) -> None:
    """
    Run the MCP server.

    This is the default command when no subcommand is specified.
    Index with 'msgsearcher index' first; the server only reads.
    """
    _configure_logging(verbose)
    from .server import mcp

    mcp.run()


@app.default
def default_handler(verbose: VerboseFlag = False) -> None:
    """Run the MCP server (default when no command specified)."""
    serve(verbose=verbose)


def main() -> None:
    """Entry point for the CLI."""
    app()
