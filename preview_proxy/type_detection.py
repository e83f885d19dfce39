from __future__ import annotations

import io
import mimetypes
import struct
import zipfile
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit

import olefile

OCTET_STREAM = "application/octet-stream"

WORD_MIME_TYPES = {
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.oasis.opendocument.text",
    "application/rtf",
    "text/rtf",
}
SPREADSHEET_MIME_TYPES = {"application/vnd.ms-excel"}
PRESENTATION_MIME_TYPES = {"application/vnd.ms-powerpoint"}

WORD_EXTENSIONS = {".doc", ".docx", ".odt", ".rtf"}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xls", ".ods"}
PRESENTATION_EXTENSIONS = {".pptx", ".ppt", ".odp"}

EXTENSION_MIME_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".rtf": "application/rtf",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ods": "application/vnd.oasis.opendocument.spreadsheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".odp": "application/vnd.oasis.opendocument.presentation",
    ".csv": "text/csv",
    ".txt": "text/plain",
    ".exe": "application/x-msdownload",
}

MAGIC_SIGNATURES: list[tuple[bytes, str, str]] = [
    (b"%PDF", ".pdf", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", ".png", "image/png"),
    (b"\xff\xd8\xff", ".jpg", "image/jpeg"),
    (b"GIF87a", ".gif", "image/gif"),
    (b"GIF89a", ".gif", "image/gif"),
    (b"BM", ".bmp", "image/bmp"),
    (b"II*\x00", ".tif", "image/tiff"),
    (b"MM\x00*", ".tif", "image/tiff"),
    (b"{\\rtf", ".rtf", "application/rtf"),
    (b"\x1f\x8b", ".gz", "application/gzip"),
    (b"7z\xbc\xaf\x27\x1c", ".7z", "application/x-7z-compressed"),
    (b"Rar!\x1a\x07", ".rar", "application/vnd.rar"),
    (b"MZ", ".exe", "application/x-msdownload"),
]

ZIP_SIGNATURE = b"PK\x03\x04"
OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

OOXML_PREFIXES: list[tuple[str, str]] = [
    ("word/", ".docx"),
    ("xl/", ".xlsx"),
    ("ppt/", ".pptx"),
]

ODF_MIME_EXTENSIONS = {
    "application/vnd.oasis.opendocument.text": ".odt",
    "application/vnd.oasis.opendocument.spreadsheet": ".ods",
    "application/vnd.oasis.opendocument.presentation": ".odp",
}

OLE_STREAM_MARKERS: list[tuple[str, str]] = [
    ("PowerPoint Document", ".ppt"),
    ("WordDocument", ".doc"),
    ("Workbook", ".xls"),
    ("Book", ".xls"),
]


@dataclass(frozen=True)
class DetectedType:
    extension: str
    mime_type: str

    def to_dict(self) -> dict:
        return asdict(self)


class FormatCategory(str, Enum):
    PDF = "pdf"
    WORD = "word"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"
    CSV = "csv"
    UNSUPPORTED = "unsupported"


def mime_type_for_extension(extension: str) -> str:
    normalized = (extension or "").lower()
    if not normalized:
        return OCTET_STREAM
    if normalized in EXTENSION_MIME_TYPES:
        return EXTENSION_MIME_TYPES[normalized]
    guessed, _ = mimetypes.guess_type(f"file{normalized}")
    return guessed or OCTET_STREAM


def extension_from_name(name: str | None) -> str:
    """Suffix of a filename or of a URL's path component, lower-cased."""
    raw = (name or "").strip()
    if not raw:
        return ""
    if "://" in raw:
        raw = unquote(urlsplit(raw).path)
    return PurePosixPath(raw).suffix.lower()


def _refine_zip(buffer: bytes) -> DetectedType:
    try:
        with zipfile.ZipFile(io.BytesIO(buffer)) as archive:
            names = archive.namelist()
            if "mimetype" in names:
                declared = archive.read("mimetype").decode("ascii", errors="ignore").strip()
                if declared in ODF_MIME_EXTENSIONS:
                    return DetectedType(ODF_MIME_EXTENSIONS[declared], declared)
    except (zipfile.BadZipFile, OSError, KeyError, RuntimeError, ValueError):
        return DetectedType(".zip", "application/zip")

    for prefix, extension in OOXML_PREFIXES:
        if any(name.startswith(prefix) for name in names):
            return DetectedType(extension, EXTENSION_MIME_TYPES[extension])
    return DetectedType(".zip", "application/zip")


def _refine_ole(buffer: bytes) -> DetectedType:
    """Refine a compound file by its root-level stream names, not by its payload text."""
    try:
        with olefile.OleFileIO(io.BytesIO(buffer)) as container:
            for stream_name, extension in OLE_STREAM_MARKERS:
                if container.exists(stream_name):
                    return DetectedType(extension, EXTENSION_MIME_TYPES[extension])
    except (OSError, ValueError, IndexError, struct.error):
        return DetectedType(".cfb", "application/x-cfb")
    return DetectedType(".cfb", "application/x-cfb")


def detect_signature(buffer: bytes) -> DetectedType | None:
    if not buffer:
        return None
    if buffer.startswith(ZIP_SIGNATURE):
        return _refine_zip(buffer)
    if buffer.startswith(OLE_SIGNATURE):
        return _refine_ole(buffer)
    if buffer.startswith(b"RIFF") and buffer[8:12] == b"WEBP":
        return DetectedType(".webp", "image/webp")
    for signature, extension, mime in MAGIC_SIGNATURES:
        if buffer.startswith(signature):
            return DetectedType(extension, mime)
    return None


def detect(buffer: bytes | None, fallback_name: str | None = None) -> DetectedType:
    signature_match = detect_signature(bytes(buffer or b""))
    if signature_match is not None:
        return signature_match

    extension = extension_from_name(fallback_name)
    return DetectedType(extension, mime_type_for_extension(extension))


def classify(detected: DetectedType) -> FormatCategory:
    extension = (detected.extension or "").lower()
    mime_type = (detected.mime_type or "").lower()

    if mime_type == "application/pdf" or extension == ".pdf":
        return FormatCategory.PDF
    if extension in WORD_EXTENSIONS or mime_type in WORD_MIME_TYPES:
        return FormatCategory.WORD
    if extension in SPREADSHEET_EXTENSIONS or "spreadsheet" in mime_type or mime_type in SPREADSHEET_MIME_TYPES:
        return FormatCategory.SPREADSHEET
    if (
        extension in PRESENTATION_EXTENSIONS
        or "presentation" in mime_type
        or mime_type in PRESENTATION_MIME_TYPES
    ):
        return FormatCategory.PRESENTATION
    if extension == ".csv" or mime_type == "text/csv":
        return FormatCategory.CSV
    return FormatCategory.UNSUPPORTED
