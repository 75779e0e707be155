"""Tests for the reference crawler (folder scanning and extraction)."""

from __future__ import annotations

import email
import zipfile
from pathlib import Path

import pytest

from msgsearcher.index.disk import (
    Candidate,
    _extract_attachments,
    _extract_body_text,
    _strip_html,
    decode_text,
    extract,
    normalize_path,
    scan_folder,
)
from msgsearcher.index.folders import FolderConfig
from msgsearcher.index.store import RecordStatus


def _candidate(file_path: Path, path: str = "") -> Candidate:
    stat = file_path.stat()
    return Candidate(
        filename=file_path.name,
        path=path,
        size=stat.st_size,
        modified_time=int(stat.st_mtime),
        source=file_path,
        folder_ref=1,
    )


class TestNormalizePath:
    """Tests for the portable ':'-separated path form."""

    @pytest.mark.parametrize(
        "relative, expected",
        [
            ("2020/07", "2020:07"),
            ("inbox", "inbox"),
            ("a/b/c", "a:b:c"),
            ("", ""),
        ],
    )
    def test_relative_to_root(self, tmp_path: Path, relative, expected):
        assert normalize_path(tmp_path / relative, tmp_path) == expected

    def test_prefix(self, tmp_path: Path):
        assert normalize_path(tmp_path / "2020", tmp_path, "Mail") == "Mail:2020"
        assert normalize_path(tmp_path, tmp_path, "Mail") == "Mail"

    def test_outside_root_raises(self, tmp_path: Path):
        with pytest.raises(ValueError):
            normalize_path(tmp_path.parent, tmp_path)


class TestScanFolder:
    """Tests for folder scanning."""

    def test_filters_by_extension(self, archive: Path):
        folder = FolderConfig("Mail", str(archive), frozenset({"eml", "txt"}), rowid=7)
        found = [(c.path, c.filename) for c in scan_folder(folder)]
        assert found == [
            ("Mail:2020:07", "notes.txt"),
            ("Mail:2020:07", "report.eml"),
            ("Mail", "readme.txt"),
        ]

    def test_all_files_when_no_extensions(self, archive: Path):
        folder = FolderConfig("Mail", str(archive), rowid=7)
        names = {c.filename for c in scan_folder(folder)}
        assert names == {"notes.txt", "report.eml", "readme.txt", "photo.jpg"}

    def test_top_level_only(self, archive: Path):
        folder = FolderConfig(
            "Mail", str(archive), frozenset({"txt"}), include_subfolders=False
        )
        assert [c.filename for c in scan_folder(folder)] == ["readme.txt"]

    def test_candidate_fields(self, archive: Path):
        folder = FolderConfig("Mail", str(archive), frozenset({"eml"}), rowid=7)
        (candidate,) = scan_folder(folder)
        source = archive / "2020" / "07" / "report.eml"
        assert candidate.source == source
        assert candidate.size == source.stat().st_size
        assert candidate.modified_time == int(source.stat().st_mtime)
        assert candidate.folder_ref == 7

    def test_skips_oversized_files(self, archive: Path):
        folder = FolderConfig("Mail", str(archive), frozenset({"txt", "eml"}))
        names = [c.filename for c in scan_folder(folder, max_file_size=15)]
        assert names == ["notes.txt"]

    def test_max_file_size_from_environment(self, archive: Path, monkeypatch):
        monkeypatch.setenv("MSGSEARCHER_MAX_FILE_SIZE", "15")
        folder = FolderConfig("Mail", str(archive), frozenset({"txt"}))
        assert [c.filename for c in scan_folder(folder)] == ["notes.txt"]

    def test_missing_folder_raises(self, tmp_path: Path):
        folder = FolderConfig("Gone", str(tmp_path / "nope"))
        with pytest.raises(FileNotFoundError):
            list(scan_folder(folder))


class TestExtract:
    """Tests for building records from files."""

    def test_eml_headers_and_body(self, archive: Path):
        record = extract(_candidate(archive / "2020" / "07" / "report.eml", "2020:07"))
        assert record.status == RecordStatus.OK
        assert record.identity == ("report.eml", "2020:07")
        assert record.subject == "Status"
        assert record.sender == "Raymond <raymond@x>"
        assert record.recipient == "team@x"
        assert record.cc == "boss@x"
        assert record.send_date == 1595435977
        assert "All systems nominal." in record.contents
        assert record.folder_ref == 1

    def test_text_file(self, archive: Path):
        record = extract(_candidate(archive / "readme.txt"))
        assert record.status == RecordStatus.OK
        assert record.contents == "top level readme"
        assert record.subject == ""

    def test_html_file_is_stripped(self, tmp_path: Path):
        page = tmp_path / "page.html"
        page.write_text("<html><script>x()</script><p>Visible</p></html>", "utf-8")
        record = extract(_candidate(page))
        assert record.contents == "Visible"

    def test_unsupported_type_keeps_metadata(self, archive: Path):
        record = extract(_candidate(archive / "photo.jpg"))
        assert record.status == RecordStatus.UNSUPPORTED
        assert record.contents == ""
        assert record.size == (archive / "photo.jpg").stat().st_size

    def test_msg_container_is_unsupported(self, tmp_path: Path):
        msg = tmp_path / "report.msg"
        msg.write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1")
        assert extract(_candidate(msg)).status == RecordStatus.UNSUPPORTED

    def test_empty_file(self, tmp_path: Path):
        empty = tmp_path / "empty.txt"
        empty.write_bytes(b"")
        record = extract(_candidate(empty))
        assert record.status == RecordStatus.EMPTY
        assert record.contents == ""

    def test_undecodable_text_fails(self, tmp_path: Path):
        broken = tmp_path / "broken.txt"
        broken.write_bytes(b"\xff\xfeA")  # UTF-16 BOM, truncated
        record = extract(_candidate(broken))
        assert record.status == RecordStatus.FAILED
        assert record.contents == ""

    def test_missing_file_raises(self, tmp_path: Path):
        candidate = Candidate("gone.txt", "", 1, 1, tmp_path / "gone.txt")
        with pytest.raises(OSError):
            extract(candidate)


class TestDecodeText:
    @pytest.mark.parametrize(
        "data, expected",
        [
            (b"plain", "plain"),
            ("café".encode("utf-8"), "café"),
            (b"\xef\xbb\xbfbom", "bom"),
            ("hé".encode("utf-16"), "hé"),
            (b"caf\xe9", "café"),  # Windows-1252 fallback
        ],
    )
    def test_decodes(self, data, expected):
        assert decode_text(data) == expected


class TestExtractBodyText:
    """Tests for email body extraction."""

    def test_extract_plain_text(self):
        msg = email.message_from_string("Content-Type: text/plain\n\nHello world")
        assert "Hello world" in _extract_body_text(msg)

    def test_extract_from_multipart(self):
        raw = """\
Content-Type: multipart/alternative; boundary="----=_Part"

------=_Part
Content-Type: text/plain

Plain text version

------=_Part
Content-Type: text/html

<html><body>HTML version</body></html>

------=_Part--
"""
        result = _extract_body_text(email.message_from_string(raw))
        # Should prefer plain text
        assert "Plain text version" in result
        assert "HTML version" not in result

    def test_falls_back_to_html(self):
        raw = """\
Content-Type: multipart/alternative; boundary="b"

--b
Content-Type: text/html

<html><body><p>Only HTML</p></body></html>

--b--
"""
        assert _extract_body_text(email.message_from_string(raw)) == "Only HTML"

    def test_skips_attachment_parts(self):
        raw = """\
Content-Type: multipart/mixed; boundary="b"

--b
Content-Type: text/plain

Body

--b
Content-Type: text/plain
Content-Disposition: attachment; filename="notes.txt"

Attached text

--b--
"""
        result = _extract_body_text(email.message_from_string(raw))
        assert "Body" in result
        assert "Attached text" not in result


class TestStripHtml:
    """Tests for HTML stripping."""

    def test_removes_script_tags(self):
        html = '<p>Hello</p><script>alert("xss")</script><p>World</p>'
        result = _strip_html(html)
        assert "alert" not in result
        assert "Hello" in result
        assert "World" in result

    def test_removes_style_tags(self):
        html = "<style>.red{color:red}</style><p>Content</p>"
        result = _strip_html(html)
        assert "color" not in result
        assert "Content" in result

    def test_decodes_html_entities(self):
        result = _strip_html("&lt;tag&gt; &amp; &quot;quotes&quot;")
        assert "<tag>" in result
        assert '"quotes"' in result

    def test_handles_nested_script_bypass_attempt(self):
        html = '<<script>script>alert("xss")<</script>/script>'
        result = _strip_html(html)
        assert "alert" not in result

    def test_returns_empty_for_nothing(self):
        assert _strip_html("") == ""


class TestExtractAttachments:
    """Tests for attachment name extraction."""

    def test_no_attachments_plain_text(self):
        msg = email.message_from_string("Content-Type: text/plain\n\nHello world")
        assert _extract_attachments(msg) == []

    def test_attachment_and_inline_names(self):
        raw = """\
Content-Type: multipart/mixed; boundary="----=_Part"

------=_Part
Content-Type: text/plain

Body text

------=_Part
Content-Type: application/pdf
Content-Disposition: attachment; filename="invoice.pdf"

%PDF-fake-content

------=_Part
Content-Type: image/png
Content-ID: <img1>
Content-Disposition: inline; filename="logo.png"

PNG-fake-content

------=_Part--
"""
        msg = email.message_from_string(raw)
        assert _extract_attachments(msg) == ["invoice.pdf", "logo.png"]

    def test_attachments_reach_the_record(self, tmp_path: Path):
        eml = tmp_path / "with_file.eml"
        eml.write_bytes(
            b'Subject: Files\nContent-Type: multipart/mixed; boundary="b"\n\n'
            b"--b\nContent-Type: text/plain\n\nSee attached\n\n"
            b'--b\nContent-Type: application/pdf\n'
            b'Content-Disposition: attachment; filename="a.pdf"\n\nPDF\n\n'
            b"--b--\n"
        )
        record = extract(_candidate(eml))
        assert record.attachments == ("a.pdf",)
        assert "See attached" in record.contents


def _write_zip(path: Path, member: str, xml: str) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr(member, xml)
    return path


class TestOfficeDocuments:
    """Tests for .docx and .odt text extraction."""

    def test_docx(self, tmp_path: Path):
        docx = _write_zip(
            tmp_path / "memo.docx",
            "word/document.xml",
            '<?xml version="1.0" encoding="UTF-8"?>'
            '<w:document xmlns:w="urn:w"><w:body>'
            "<w:p><w:r><w:t>Consumable </w:t></w:r><w:r><w:t>meat</w:t></w:r></w:p>"
            "<w:p><w:r><w:t>Second paragraph</w:t></w:r></w:p>"
            "</w:body></w:document>",
        )
        record = extract(_candidate(docx))
        assert record.status == RecordStatus.OK
        assert record.contents == "Consumable meat\nSecond paragraph"

    def test_odt(self, tmp_path: Path):
        odt = _write_zip(
            tmp_path / "memo.odt",
            "content.xml",
            '<?xml version="1.0" encoding="UTF-8"?>'
            '<office:document-content xmlns:text="urn:t"><office:body>'
            "<text:h>Title</text:h>"
            "<text:p>Body <text:span>text</text:span></text:p>"
            "</office:body></office:document-content>",
        )
        record = extract(_candidate(odt))
        assert record.contents == "Title\nBody text"

    def test_not_a_zip_fails(self, tmp_path: Path):
        broken = tmp_path / "broken.docx"
        broken.write_bytes(b"not a zip archive")
        record = extract(_candidate(broken))
        assert record.status == RecordStatus.FAILED
        assert record.contents == ""

    def test_missing_document_member_fails(self, tmp_path: Path):
        odd = _write_zip(tmp_path / "odd.docx", "other.xml", "<x/>")
        assert extract(_candidate(odd)).status == RecordStatus.FAILED
