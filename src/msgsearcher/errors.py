"""Exception types raised by the index core."""

from __future__ import annotations


class MsgSearcherError(Exception):
    """Base class for msgsearcher errors."""


class IdentityLookupError(MsgSearcherError, ValueError):
    """Raised when a (filename, path) identity is malformed."""


class RecordNotFoundError(MsgSearcherError, LookupError):
    """Raised when a record id does not exist in the store."""


class FingerprintMismatchAmbiguous(UserWarning):
    """Several live records share one (filename, path) identity.

    This is a data-quality warning, not an error: the staleness check
    resolves it by using the most recently inserted record.
    """

    def __init__(self, filename: str, path: str, ids: list[int]):
        super().__init__(
            f"{len(ids)} records for {filename!r} in {path!r} "
            f"(ids {', '.join(str(i) for i in ids)})"
        )
        self.filename = filename
        self.path = path
        self.ids = ids


class MigrationAborted(MsgSearcherError):
    """Raised when a layout migration fails.

    The previously-live table is left intact whenever this is raised.
    """


class QuerySyntaxError(MsgSearcherError, ValueError):
    """Raised when a query expression cannot be parsed."""

    def __init__(self, message: str, position: int | None = None):
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)
        self.position = position


class UnsupportedFieldOperation(MsgSearcherError):
    """Raised when a full-text operation targets a field with no token index."""
