"""Watched-folder definitions (FolderConfig).

The index core only reads folders: list_folders() and resolve(). add() is
the administrative entry point used by the CLI to register a folder.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field


def _normalize_extensions(extensions) -> frozenset[str]:
    return frozenset(
        ext.strip().lstrip(".").lower() for ext in extensions if ext.strip()
    )


@dataclass(frozen=True)
class FolderConfig:
    """A watched folder and the files it contributes."""

    name: str
    path: str
    extensions: frozenset[str] = field(default_factory=frozenset)
    include_subfolders: bool = True
    rowid: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "extensions", _normalize_extensions(self.extensions)
        )

    def accepts(self, filename: str) -> bool:
        """Check whether a file name matches this folder's extensions."""
        if not self.extensions:
            return True
        _, dot, ext = filename.rpartition(".")
        return bool(dot) and ext.lower() in self.extensions


_FORBIDDEN_NAME_CHARS = (":", "/", "\\", "\x00")


def validate_folder_name(name: str) -> None:
    if not name or not name.strip():
        raise ValueError("Folder name must not be empty")
    for char in _FORBIDDEN_NAME_CHARS:
        if char in name:
            raise ValueError(f"Folder name {name!r} must not contain {char!r}")


def _row_to_folder(row: sqlite3.Row) -> FolderConfig:
    return FolderConfig(
        name=row["name"],
        path=row["path"],
        extensions=frozenset((row["extensions"] or "").split(",")),
        include_subfolders=bool(row["include_subfolders"]),
        rowid=row["rowid"],
    )


class FolderStore:
    """Read access to the folders table."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def list_folders(self) -> list[FolderConfig]:
        """Return every folder in storage order."""
        cursor = self._conn.execute(
            "SELECT rowid, name, path, extensions, include_subfolders "
            "FROM folders ORDER BY rowid"
        )
        return [_row_to_folder(row) for row in cursor]

    def resolve(self, folder_ref: int) -> FolderConfig | None:
        """Return the folder with the given rowid, or None."""
        cursor = self._conn.execute(
            "SELECT rowid, name, path, extensions, include_subfolders "
            "FROM folders WHERE rowid = ?",
            (folder_ref,),
        )
        row = cursor.fetchone()
        return _row_to_folder(row) if row else None

    def add(self, folder: FolderConfig) -> int:
        """
        Register a folder and return its rowid.

        The name becomes the first component of every record path from
        this folder, so it must be unique and free of separators.

        Raises:
            ValueError: If the name is empty, contains a separator or is
                already registered
        """
        validate_folder_name(folder.name)
        cursor = self._conn.execute(
            "SELECT 1 FROM folders WHERE name = ?", (folder.name,)
        )
        if cursor.fetchone():
            raise ValueError(f"Folder {folder.name!r} is already registered")
        cursor = self._conn.execute(
            "INSERT INTO folders (name, path, extensions, include_subfolders) "
            "VALUES (?, ?, ?, ?)",
            (
                folder.name,
                folder.path,
                ",".join(sorted(folder.extensions)),
                int(folder.include_subfolders),
            ),
        )
        self._conn.commit()
        return cursor.lastrowid
