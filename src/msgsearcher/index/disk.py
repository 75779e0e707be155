"""Reference crawler: discover and extract files from watched folders.

A watched folder named "Outlook" looks like:
    <folder.path>/
    ├── 2020/
    │   └── 07/
    │       ├── report.eml        → path "Outlook:2020:07", filename "report.eml"
    │       └── notes.txt
    └── readme.txt                → path "Outlook", filename "readme.txt"

Paths are stored relative to the folder root with ':' as the separator,
so an index stays valid when the archive is moved or opened from
another OS. The folder name comes first, which keeps identities of
different folders apart.

Extraction:
- .eml: RFC 5322 message (headers, text body, attachment names)
- plain text types: decoded text
- .docx / .odt: text of the document XML
- anything else: metadata only, status UNSUPPORTED
"""

from __future__ import annotations

import email
import io
import logging
import re
import warnings
import zipfile
from dataclasses import dataclass
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import TYPE_CHECKING

from ..config import get_max_file_size
from .store import MessageRecord, RecordStatus

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .folders import FolderConfig

logger = logging.getLogger(__name__)

PATH_SEPARATOR = ":"

MESSAGE_EXTENSIONS = {"eml"}
TEXT_EXTENSIONS = {"txt", "text", "md", "csv", "log", "json", "xml"}
HTML_EXTENSIONS = {"html", "htm"}
OFFICE_EXTENSIONS = {"docx", "odt"}

# BOM → codec, checked in order (utf-32 before utf-16)
_BOMS = (
    (b"\xef\xbb\xbf", "utf-8-sig"),
    (b"\xff\xfe\x00\x00", "utf-32"),
    (b"\x00\x00\xfe\xff", "utf-32"),
    (b"\xff\xfe", "utf-16"),
    (b"\xfe\xff", "utf-16"),
)


@dataclass
class Candidate:
    """A file discovered on disk, before extraction."""

    filename: str
    path: str
    size: int
    modified_time: int
    source: Path
    folder_ref: int | None = None


def normalize_path(directory: Path, root: Path, prefix: str = "") -> str:
    """
    Convert a directory under root to the portable ':'-separated form.

    Example:
        >>> normalize_path(Path("/archive/2020/07"), Path("/archive"))
        '2020:07'
        >>> normalize_path(Path("/archive/2020/07"), Path("/archive"), "Outlook")
        'Outlook:2020:07'
    """
    parts = directory.relative_to(root).parts
    if prefix:
        parts = (prefix, *parts)
    return PATH_SEPARATOR.join(parts)


def _iter_files(root: Path, recursive: bool) -> Iterator[Path]:
    entries = root.rglob("*") if recursive else root.iterdir()
    for entry in sorted(entries):
        try:
            if entry.is_file():
                yield entry
        except OSError as e:
            logger.debug("Cannot stat %s: %s", entry, e)


def scan_folder(
    folder: FolderConfig, max_file_size: int | None = None
) -> Iterator[Candidate]:
    """
    Find the files a watched folder contributes to the index.

    Only reads directory entries and stat() results, never file content.

    Args:
        folder: Folder definition
        max_file_size: Skip larger files (config default if None)

    Yields:
        Candidate for each matching file, in path order

    Raises:
        FileNotFoundError: If the folder root does not exist
    """
    root = Path(folder.path).expanduser()
    if not root.is_dir():
        raise FileNotFoundError(f"Folder not found: {root}")

    limit = max_file_size if max_file_size is not None else get_max_file_size()

    for file_path in _iter_files(root, folder.include_subfolders):
        if not folder.accepts(file_path.name):
            continue
        try:
            stat = file_path.stat()
        except OSError as e:
            # Deleted between listing and stat
            logger.debug("Cannot stat %s: %s", file_path, e)
            continue
        if stat.st_size > limit:
            logger.debug(
                "Skipping %s (%d bytes > %d)", file_path, stat.st_size, limit
            )
            continue
        yield Candidate(
            filename=file_path.name,
            path=normalize_path(file_path.parent, root, folder.name),
            size=stat.st_size,
            modified_time=int(stat.st_mtime),
            source=file_path,
            folder_ref=folder.rowid,
        )


def extract(candidate: Candidate) -> MessageRecord:
    """
    Read a candidate file and build its record.

    Content that cannot be parsed gives a record with status FAILED and
    empty content rather than an exception, so one bad file never stops
    an indexing run.

    Raises:
        OSError: If the file cannot be read at all
    """
    record = MessageRecord(
        filename=candidate.filename,
        path=candidate.path,
        size=candidate.size,
        modified_time=candidate.modified_time,
        folder_ref=candidate.folder_ref,
    )
    ext = candidate.filename.rpartition(".")[2].lower()
    if "." not in candidate.filename:
        ext = ""

    supported = (
        MESSAGE_EXTENSIONS | TEXT_EXTENSIONS | HTML_EXTENSIONS | OFFICE_EXTENSIONS
    )
    if ext not in supported:
        record.status = RecordStatus.UNSUPPORTED
        return record

    data = candidate.source.read_bytes()
    if not data.strip():
        record.status = RecordStatus.EMPTY
        return record

    try:
        if ext in MESSAGE_EXTENSIONS:
            _fill_from_message(record, email.message_from_bytes(data))
        elif ext in HTML_EXTENSIONS:
            record.contents = _strip_html(decode_text(data))
        elif ext in OFFICE_EXTENSIONS:
            record.contents = _extract_office_text(data, ext)
        else:
            record.contents = decode_text(data)
    except (ValueError, LookupError, UnicodeDecodeError) as e:
        logger.debug("Failed to extract %s: %s", candidate.source, e)
        record.status = RecordStatus.FAILED
        record.contents = ""
    return record


def decode_text(data: bytes) -> str:
    """Decode file bytes: BOM if present, else UTF-8, else Windows-1252."""
    for bom, codec in _BOMS:
        if data.startswith(bom):
            return data.decode(codec)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("cp1252", errors="replace")


def _decode_header_value(value: str | None) -> str:
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, UnicodeDecodeError, LookupError):
        return str(value)


def _fill_from_message(record: MessageRecord, msg: email.message.Message) -> None:
    record.subject = _decode_header_value(msg["Subject"])
    record.sender = _decode_header_value(msg["From"])
    record.recipient = _decode_header_value(msg["To"])
    record.cc = _decode_header_value(msg["Cc"])

    if msg["Date"]:
        try:
            record.send_date = int(parsedate_to_datetime(msg["Date"]).timestamp())
        except (ValueError, TypeError):
            logger.debug("Unparseable Date header: %r", msg["Date"])

    record.attachments = tuple(_extract_attachments(msg))
    record.contents = _extract_body_text(msg)
    if not record.contents.strip() and not record.subject:
        record.status = RecordStatus.EMPTY


def _extract_attachments(msg: email.message.Message) -> list[str]:
    """Return the file names of attachment and inline parts."""
    names: list[str] = []
    if not msg.is_multipart():
        return names
    for part in msg.walk():
        if part.is_multipart():
            continue
        filename = part.get_filename()
        if filename:
            names.append(_decode_header_value(filename))
    return names


def _decode_payload(part: email.message.Message) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _extract_body_text(msg: email.message.Message) -> str:
    """
    Extract plain text body from email message.

    Handles multipart messages, preferring text/plain over text/html.
    Attachment parts are skipped.
    """
    if not msg.is_multipart():
        text = _decode_payload(msg)
        if msg.get_content_type() == "text/html":
            return _strip_html(text)
        return text

    body_parts = [
        part
        for part in msg.walk()
        if not part.is_multipart() and not part.get_filename()
    ]
    text_parts = [
        _decode_payload(part)
        for part in body_parts
        if part.get_content_type() == "text/plain"
    ]
    if any(text_parts):
        return "\n".join(t for t in text_parts if t)

    # Fallback to HTML if no plain text
    for part in body_parts:
        if part.get_content_type() == "text/html":
            return _strip_html(_decode_payload(part))
    return ""


def _strip_html(html: str) -> str:
    """
    HTML to text conversion using BeautifulSoup.

    Uses a proper HTML parser instead of regex so malformed markup like
    <<script> cannot leak script content into the index.
    """
    if not html:
        return ""

    from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        soup = BeautifulSoup(html, "html.parser")

    # Remove script and style elements completely
    for element in soup(["script", "style"]):
        element.decompose()

    text = soup.get_text(separator="\n", strip=True)

    # Collapse multiple newlines
    text = re.sub(r"\n\s*\n", "\n\n", text)
    text = re.sub(r" +", " ", text)

    return text.strip()


# Zip member holding the text, and the paragraph and run tags inside it
_OFFICE_LAYOUTS = {
    "docx": ("word/document.xml", ["w:p"], ["w:t"]),
    "odt": ("content.xml", ["text:p", "text:h"], None),
}


def _extract_office_text(data: bytes, ext: str) -> str:
    """
    Text of a zipped office document (.docx, .odt), one line per paragraph.

    Raises:
        ValueError: If the data is not a zip archive
        KeyError: If the document member is missing
    """
    from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

    member, paragraph_tags, run_tags = _OFFICE_LAYOUTS[ext]
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            xml = archive.read(member).decode("utf-8")
    except zipfile.BadZipFile as e:
        raise ValueError(f"Not a {ext} document: {e}") from e

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        soup = BeautifulSoup(xml, "html.parser")

    lines = []
    for paragraph in soup.find_all(paragraph_tags):
        if run_tags:
            text = "".join(run.get_text() for run in paragraph.find_all(run_tags))
        else:
            text = paragraph.get_text()
        if text.strip():
            lines.append(text.strip())
    return "\n".join(lines)
