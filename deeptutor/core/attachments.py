"""
AttachmentCodec: turn a user-selected file into an Attachment descriptor.
"""

import base64
import mimetypes
from pathlib import Path
from typing import Optional

from deeptutor.shared.exceptions import AttachmentError
from deeptutor.workspace.models import Attachment, DocumentType

DEFAULT_MIME_TYPE = "application/octet-stream"

# mimetypes does not know every format users upload
_EXTRA_MIME_TYPES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".webp": "image/webp",
}


def guess_mime_type(name: str) -> str:
    suffix = Path(name).suffix.lower()
    if suffix in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[suffix]
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or DEFAULT_MIME_TYPE


def encode_bytes(data: bytes, name: str, mime_type: Optional[str] = None) -> Attachment:
    """Base64-encode raw bytes (no data-URL header)."""
    return Attachment(
        data=base64.b64encode(data).decode("ascii"),
        mime_type=mime_type or DEFAULT_MIME_TYPE,
        name=name,
    )


def encode_file(path: Path, mime_type: Optional[str] = None) -> Attachment:
    """
    Read a file into an Attachment.

    The MIME type is taken from the argument, then guessed from the file name,
    then defaults to application/octet-stream.

    Raises:
        AttachmentError if the file cannot be read
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise AttachmentError(f"Cannot read {path.name}: {e.strerror or e}") from e
    return encode_bytes(data, path.name, mime_type or guess_mime_type(path.name))


def infer_document_type(name: str) -> DocumentType:
    lowered = name.lower()
    if lowered.endswith(".ppt") or lowered.endswith(".pptx"):
        return DocumentType.PPT
    if lowered.endswith(".pdf"):
        return DocumentType.PDF
    return DocumentType.TXT


def subject_from_filename(name: str) -> str:
    """File name without its last extension."""
    stem = Path(name).stem if "." in name else name
    return stem or name
