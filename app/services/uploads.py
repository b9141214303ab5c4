from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from fastapi import HTTPException, UploadFile, status

MB = 1024 * 1024
CHAT_DOCUMENT_TYPE = "chat_files"

# Magic byte signatures for known binary file types.
# Used to cross-check that uploaded file content matches the claimed extension.
_MAGIC_SIGNATURES: dict[str, list[bytes]] = {
    ".pdf": [b"%PDF"],
    ".png": [b"\x89PNG\r\n\x1a\n"],
    ".jpg": [b"\xff\xd8\xff"],
    ".jpeg": [b"\xff\xd8\xff"],
    ".gif": [b"GIF87a", b"GIF89a"],
    ".webp": [b"RIFF"],
    ".doc": [b"\xd0\xcf\x11\xe0"],
    ".docx": [b"PK\x03\x04", b"PK\x05\x06"],
    ".xlsx": [b"PK\x03\x04", b"PK\x05\x06"],
    ".pptx": [b"PK\x03\x04", b"PK\x05\x06"],
    ".zip": [b"PK\x03\x04", b"PK\x05\x06"],
    ".rar": [b"Rar!\x1a\x07"],
}

# Extensions whose content can execute scripts when rendered in a browser.
_DANGEROUS_EXTENSIONS = {".html", ".htm", ".svg", ".xhtml", ".js", ".mjs", ".xml"}

DOCUMENT_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)

CHAT_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "text/plain",
        "text/csv",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/zip",
        "application/x-zip-compressed",
        "application/x-rar-compressed",
        "application/vnd.rar",
        "video/mp4",
        "video/x-msvideo",
        "video/quicktime",
        "audio/mpeg",
        "audio/wav",
        "audio/ogg",
    }
)


@dataclass(frozen=True)
class UploadRule:
    name: str
    max_size_bytes: int
    allowed_mime_types: frozenset[str]


DOCUMENT_RULE = UploadRule("document", 10 * MB, DOCUMENT_MIME_TYPES)
CHAT_RULE = UploadRule("chat", 50 * MB, CHAT_MIME_TYPES)
KYC_RULE = UploadRule("kyc", 10 * MB, frozenset({"application/pdf"}))


class UploadValidationError(ValueError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_http(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_file", "message": self.message, "details": self.details},
        )


@dataclass
class ValidatedUpload:
    data: bytes
    original_name: str
    content_type: str
    extension: str

    @property
    def size(self) -> int:
        return len(self.data)


def rule_for_document_type(document_type: str | None) -> UploadRule:
    if document_type == CHAT_DOCUMENT_TYPE:
        return CHAT_RULE
    return DOCUMENT_RULE


def _safe_filename(filename: str | None, fallback: str) -> str:
    if not filename:
        return fallback
    return Path(filename).name or fallback


def _validate_content_type(header_bytes: bytes, ext: str) -> None:
    """Validate that file content matches claimed extension via magic bytes.

    Raises UploadValidationError if the content does not match or the extension is dangerous.
    """
    if ext in _DANGEROUS_EXTENSIONS:
        raise UploadValidationError(
            f"File type '{ext}' is not allowed because it may contain executable content"
        )
    signatures = _MAGIC_SIGNATURES.get(ext)
    if signatures is None:
        return
    if not any(header_bytes.startswith(sig) for sig in signatures):
        raise UploadValidationError(f"File content does not match the expected format for '{ext}'")


def validate_upload_bytes(
    data: bytes,
    filename: str | None,
    content_type: str | None,
    rule: UploadRule,
) -> ValidatedUpload:
    original_name = _safe_filename(filename, "upload.bin")
    ext = Path(original_name).suffix.lower()
    mime = (content_type or "application/octet-stream").split(";")[0].strip().lower()

    if not data:
        raise UploadValidationError("Empty file")
    if len(data) > rule.max_size_bytes:
        raise UploadValidationError(
            "File size exceeds limit",
            {
                "max_size_bytes": rule.max_size_bytes,
                "max_size_mb": rule.max_size_bytes // MB,
                "file_size_bytes": len(data),
            },
        )
    if mime not in rule.allowed_mime_types:
        raise UploadValidationError(
            f"Invalid file type: {mime}",
            {"allowed_types": sorted(rule.allowed_mime_types)},
        )
    _validate_content_type(data[:16], ext)
    return ValidatedUpload(data=data, original_name=original_name, content_type=mime, extension=ext)


async def read_upload(file: UploadFile, rule: UploadRule) -> ValidatedUpload:
    """Read an upload in chunks, stopping as soon as it exceeds the rule's size cap."""
    chunks: list[bytes] = []
    total = 0
    try:
        while True:
            chunk = await file.read(1024 * 1024)
            if not chunk:
                break
            total += len(chunk)
            chunks.append(chunk)
            if total > rule.max_size_bytes:
                raise UploadValidationError(
                    "File size exceeds limit",
                    {
                        "max_size_bytes": rule.max_size_bytes,
                        "max_size_mb": rule.max_size_bytes // MB,
                    },
                )
    finally:
        await file.close()
    return validate_upload_bytes(b"".join(chunks), file.filename, file.content_type, rule)
