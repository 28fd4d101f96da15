"""
Upload Admission Utilities Module for NaviStream

Pre-flight checks run on an upload before any byte of it is persisted:
- Declared content type must be on the video MIME whitelist
- Declared size (request Content-Length or file part size) must not exceed
  the ceiling, 100 MiB by default; a file of exactly the ceiling is accepted
- The ``title`` companion field is required; ``category`` must be known

Rules are evaluated in that order (type, size, title) and the first failing
rule rejects the upload with an AdmissionError carrying its reason code.
Rejection has no side effects.

Also provides filename sanitization for staging paths and the human-readable
file size formatting shared by the server and the upload client.
"""

import re

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from app.core.errors import (
    INVALID_CATEGORY,
    INVALID_FIELD,
    MISSING_FIELD,
    TOO_LARGE,
    UNSUPPORTED_TYPE,
    AdmissionError,
)
from app.models.video import Category, UploadRequest


# =============================================================================
# CONSTANTS
# =============================================================================

BYTES_PER_KB: int = 1024

SIZE_UNITS: tuple[str, ...] = ("Bytes", "KB", "MB", "GB")

UNSUPPORTED_TYPE_MESSAGE: str = "Invalid file type. Supported formats: MP4, MOV, AVI, MKV"
NO_FILE_MESSAGE: str = "No video file provided"
TITLE_REQUIRED_MESSAGE: str = "Title is required"

MAX_FILENAME_LENGTH: int = 255


# =============================================================================
# SIZE FORMATTING
# =============================================================================


def format_file_size(size_bytes: int | float) -> str:
    """
    Format a byte count as a human-readable string.

    Uses powers of 1024 with the units Bytes, KB, MB and GB, two decimals at
    most and no trailing zeros.

    Example:
        >>> format_file_size(0)
        '0 Bytes'
        >>> format_file_size(1536)
        '1.5 KB'
        >>> format_file_size(10 * 1024 * 1024)
        '10 MB'
    """
    if size_bytes <= 0:
        return "0 Bytes"

    value = float(size_bytes)
    exponent = 0
    while value >= BYTES_PER_KB and exponent < len(SIZE_UNITS) - 1:
        value /= BYTES_PER_KB
        exponent += 1
    formatted = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{formatted} {SIZE_UNITS[exponent]}"


# =============================================================================
# INDIVIDUAL RULES
# =============================================================================


def normalize_content_type(content_type: str | None) -> str:
    """Lower-case media type with any parameters (``; codecs=...``) removed."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def validate_content_type(
    content_type: str | None, allowed_types: list[str]
) -> tuple[bool, str | None]:
    """
    Check a declared content type against the MIME whitelist.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if normalize_content_type(content_type) in allowed_types:
        return True, None
    return False, UNSUPPORTED_TYPE_MESSAGE


def validate_declared_size(size_bytes: int | None, max_size: int) -> tuple[bool, str | None]:
    """
    Check a declared size against the ceiling (inclusive).

    An unknown size passes; the staging store enforces the ceiling again
    while it writes.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if size_bytes is None or size_bytes <= max_size:
        return True, None
    return False, too_large_message(max_size)


def validate_title(title: Any) -> tuple[bool, str | None]:
    """A title must be a string with at least one non-blank character."""
    if isinstance(title, str) and title.strip():
        return True, None
    return False, TITLE_REQUIRED_MESSAGE


def validate_category(category: Any) -> tuple[bool, str | None]:
    """A missing or empty category is allowed (defaults to ``other``)."""
    if category is None or (isinstance(category, str) and not category.strip()):
        return True, None
    try:
        Category(str(category).strip().lower())
    except ValueError:
        allowed = ", ".join(c.value for c in Category)
        return False, f"Invalid category '{category}'. Allowed: {allowed}"
    return True, None


def too_large_message(max_size: int) -> str:
    return f"File too large. Maximum size is {format_file_size(max_size)}"


# =============================================================================
# ADMISSION FILTER
# =============================================================================


def admit_content_length(content_length: str | None, max_request_size: int, max_file_size: int) -> None:
    """
    Reject a request whose declared body length already exceeds the ceiling.

    Runs before the multipart body is read, so an oversized transfer is
    aborted without reading it.

    Args:
        content_length: Raw ``Content-Length`` header value, if any
        max_request_size: File ceiling plus the multipart overhead allowance
        max_file_size: File ceiling used in the error message

    Raises:
        AdmissionError: TooLarge
    """
    if content_length is None:
        return
    try:
        declared = int(content_length)
    except ValueError:
        return
    if declared > max_request_size:
        raise AdmissionError(TOO_LARGE, too_large_message(max_file_size))


def admit_file(
    content_type: str | None,
    size_bytes: int | None,
    allowed_types: list[str],
    max_size: int,
) -> None:
    """
    Admission rules for the file part: content type first, then size.

    Raises:
        AdmissionError: UnsupportedType or TooLarge
    """
    is_valid, error = validate_content_type(content_type, allowed_types)
    if not is_valid:
        raise AdmissionError(UNSUPPORTED_TYPE, error or UNSUPPORTED_TYPE_MESSAGE)

    is_valid, error = validate_declared_size(size_bytes, max_size)
    if not is_valid:
        raise AdmissionError(TOO_LARGE, error or too_large_message(max_size))


def admit_upload(
    owner_id: str,
    file: Any,
    title: Any,
    description: Any = None,
    category: Any = None,
) -> UploadRequest:
    """
    Companion field rules, producing the typed UploadRequest.

    Args:
        owner_id: Authenticated caller
        file: The file part (already admitted by admit_file), or None
        title: Raw ``title`` form value
        description: Raw ``description`` form value
        category: Raw ``category`` form value

    Returns:
        UploadRequest with trimmed title/description and a Category

    Raises:
        AdmissionError: MissingField or InvalidCategory
    """
    if file is None:
        raise AdmissionError(MISSING_FIELD, NO_FILE_MESSAGE)

    is_valid, error = validate_title(title)
    if not is_valid:
        raise AdmissionError(MISSING_FIELD, error or TITLE_REQUIRED_MESSAGE)

    is_valid, error = validate_category(category)
    if not is_valid:
        raise AdmissionError(INVALID_CATEGORY, error or "Invalid category")

    category_value = (
        Category(str(category).strip().lower())
        if isinstance(category, str) and category.strip()
        else Category.OTHER
    )
    if description is not None and not isinstance(description, str):
        description = None

    try:
        return UploadRequest(
            owner_id=owner_id,
            title=title,
            description=description,
            category=category_value,
            file=file,
        )
    except ValidationError as e:
        details = [
            {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise AdmissionError(INVALID_FIELD, "Validation error", details) from e


# =============================================================================
# FILENAME SANITIZATION
# =============================================================================


def sanitize_filename(filename: str | None, default: str = "upload") -> str:
    """
    Make a client-supplied filename safe to use inside a staging directory.

    Strips directory components, control and shell-special characters and
    whitespace runs, and limits the length while preserving the extension.

    Example:
        >>> sanitize_filename("../../etc/passwd")
        'passwd'
        >>> sanitize_filename("my clip (1).MP4")
        'my_clip_1.mp4'
    """
    if not filename:
        return default

    path = Path(filename.replace("\\", "/"))
    extension = re.sub(r"[^\w.]", "", path.suffix.lower())
    name = path.stem if path.suffix else path.name

    name = re.sub(r"[\x00-\x1f\x7f]", "", name)
    name = re.sub(r"\s+", "_", name)
    name = re.sub(r"[^\w\-]", "", name)
    name = re.sub(r"_+", "_", name).strip("_-.")

    if not name:
        name = default

    max_name_length = MAX_FILENAME_LENGTH - len(extension)
    return f"{name[:max_name_length]}{extension}"
