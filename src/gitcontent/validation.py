"""Upload validation, filename sanitizing and MIME helpers."""

from __future__ import annotations

import re
import time
from collections.abc import Iterable

from .config import DEFAULT_ALLOWED_EXTENSIONS, DEFAULT_MAX_FILE_SIZE
from .schemas import ValidationResult

MAX_FILE_SIZE = DEFAULT_MAX_FILE_SIZE
ALLOWED_EXTENSIONS = DEFAULT_ALLOWED_EXTENSIONS

_EXTENSION_RE = re.compile(r"\.[^.]+$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_DASH_RUN_RE = re.compile(r"-+")

MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
    ".html": "text/html",
    ".htm": "text/html",
    ".md": "text/markdown",
    ".txt": "text/plain",
    ".js": "application/javascript",
    ".json": "application/json",
    ".css": "text/css",
}

# Never cached by the read path.
UNCACHED_IMAGE_EXTENSIONS = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".ico", ".bmp"}
)


def file_extension(filename: str) -> str:
    match = _EXTENSION_RE.search(filename.lower())
    return match.group(0) if match else ""


def validate_file(
    filename: str,
    size: int,
    *,
    max_size: int = MAX_FILE_SIZE,
    allowed_extensions: Iterable[str] = ALLOWED_EXTENSIONS,
) -> ValidationResult:
    if size > max_size:
        return ValidationResult(
            valid=False,
            error=f"File too large. Maximum size is {_format_megabytes(max_size)} MB",
        )

    allowed = [ext.lower() for ext in allowed_extensions]
    ext = file_extension(filename)
    if not ext or ext not in allowed:
        return ValidationResult(
            valid=False,
            error=f"Invalid file type. Allowed: {', '.join(allowed)}",
        )

    return ValidationResult(valid=True)


def sanitize_filename(filename: str, *, max_length: int = 50) -> str:
    """Return ``<epoch-millis>-<slug><ext>`` for safe, collision-free storage."""
    ext = file_extension(filename)
    base_name = filename[: len(filename) - len(ext)]

    sanitized = _NON_ALNUM_RE.sub("-", base_name.lower())
    sanitized = _DASH_RUN_RE.sub("-", sanitized).strip("-")[:max_length]

    timestamp = int(time.time() * 1000)
    return f"{timestamp}-{sanitized}{ext}"


def get_mime_type(filename: str) -> str:
    return MIME_TYPES.get(file_extension(filename), "application/octet-stream")


def is_binary_file(filename: str) -> bool:
    mime_type = get_mime_type(filename)
    return (
        mime_type.startswith("image/")
        or mime_type == "application/pdf"
        or mime_type == "application/octet-stream"
    )


def is_image_file(filename: str) -> bool:
    return get_mime_type(filename).startswith("image/")


def is_image_path(path: str) -> bool:
    return file_extension(path) in UNCACHED_IMAGE_EXTENSIONS


def _format_megabytes(size: int) -> str:
    megabytes = size / 1024 / 1024
    if megabytes.is_integer():
        return str(int(megabytes))
    return f"{megabytes:g}"
