"""
Tests for attachment encoding.
"""

import base64
import pytest

from deeptutor.core.attachments import (
    DEFAULT_MIME_TYPE,
    encode_bytes,
    encode_file,
    guess_mime_type,
    infer_document_type,
    subject_from_filename,
)
from deeptutor.shared.exceptions import AttachmentError
from deeptutor.workspace.models import DocumentType


def test_encode_file_roundtrips_bytes(tmp_path):
    path = tmp_path / "lecture.pdf"
    path.write_bytes(b"%PDF-1.7 body")

    attachment = encode_file(path)

    assert attachment.name == "lecture.pdf"
    assert attachment.mime_type == "application/pdf"
    assert base64.b64decode(attachment.data) == b"%PDF-1.7 body"
    assert not attachment.data.startswith("data:")


def test_unknown_type_defaults_to_octet_stream(tmp_path):
    path = tmp_path / "blob.unknownext"
    path.write_bytes(b"\x00\x01")

    assert encode_file(path).mime_type == DEFAULT_MIME_TYPE
    assert encode_bytes(b"", "raw").mime_type == "application/octet-stream"


def test_explicit_mime_type_wins(tmp_path):
    path = tmp_path / "notes.dat"
    path.write_text("plain")

    assert encode_file(path, "text/plain").mime_type == "text/plain"


def test_unreadable_file_raises(tmp_path):
    with pytest.raises(AttachmentError):
        encode_file(tmp_path / "missing.pdf")


def test_markdown_is_text():
    assert guess_mime_type("README.md") == "text/markdown"


@pytest.mark.parametrize("name,expected", [
    ("slides.pptx", DocumentType.PPT),
    ("OLD.PPT", DocumentType.PPT),
    ("paper.pdf", DocumentType.PDF),
    ("notes.txt", DocumentType.TXT),
    ("photo.png", DocumentType.TXT),
])
def test_infer_document_type(name, expected):
    assert infer_document_type(name) == expected


def test_subject_drops_only_last_extension():
    assert subject_from_filename("Lecture 3.notes.pdf") == "Lecture 3.notes"
    assert subject_from_filename("README") == "README"
