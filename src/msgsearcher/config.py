"""Configuration for msgsearcher."""

import os
from pathlib import Path

# Default index location
DEFAULT_INDEX_PATH = Path.home() / ".msgsearcher" / "index.db"

DEFAULT_TOKENIZER = "unicode61 remove_diacritics 2"

# Same ceiling the original extractor used (1 GB)
DEFAULT_MAX_FILE_SIZE = 1_000_000_000

LAYOUTS = ("fts", "row")


def get_index_path() -> Path:
    """
    Get the index database path.

    Set MSGSEARCHER_INDEX_PATH to customize the location.
    Defaults to ~/.msgsearcher/index.db

    Returns:
        Path to the index database file.
    """
    env_path = os.environ.get("MSGSEARCHER_INDEX_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_INDEX_PATH


def get_default_layout() -> str:
    """
    Get the physical layout used when creating a new database.

    Set MSGSEARCHER_LAYOUT to "fts" (FTS5-backed, searchable) or "row"
    (plain table). Defaults to "fts".

    Returns:
        Layout name.
    """
    layout = os.environ.get("MSGSEARCHER_LAYOUT", "fts").strip().lower()
    if layout not in LAYOUTS:
        raise ValueError(
            f"MSGSEARCHER_LAYOUT must be one of {', '.join(LAYOUTS)}, "
            f"got {layout!r}"
        )
    return layout


def get_tokenizer() -> str:
    """
    Get the FTS5 tokenizer arguments.

    Set MSGSEARCHER_TOKENIZER to customize (e.g. "porter unicode61").
    Only takes effect when the FTS table is (re)created.
    """
    return os.environ.get("MSGSEARCHER_TOKENIZER", DEFAULT_TOKENIZER)


def get_batch_size() -> int:
    """
    Get the number of writes grouped into one transaction while indexing.

    Set MSGSEARCHER_BATCH_SIZE to customize. Defaults to 500.
    """
    return max(1, int(os.environ.get("MSGSEARCHER_BATCH_SIZE", "500")))


def get_max_file_size() -> int:
    """
    Get the largest file (in bytes) the crawler will extract.

    Set MSGSEARCHER_MAX_FILE_SIZE to customize. Defaults to 1 GB.
    """
    return int(
        os.environ.get("MSGSEARCHER_MAX_FILE_SIZE", str(DEFAULT_MAX_FILE_SIZE))
    )


def get_search_limit() -> int:
    """
    Get the default number of rows returned by search surfaces.

    Set MSGSEARCHER_SEARCH_LIMIT to customize. Defaults to 20.
    """
    return int(os.environ.get("MSGSEARCHER_SEARCH_LIMIT", "20"))
