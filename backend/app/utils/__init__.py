"""
Utilities Package for the NaviStream backend.

file_validator:
    Upload admission rules (content type, size ceiling, companion fields),
    filename sanitization and human-readable file sizes.

logger:
    Logging setup with JSON and human-readable formatters, context-carrying
    logger adapters and the orphaned-asset logger.
"""

from app.utils.file_validator import (
    admit_content_length,
    admit_file,
    admit_upload,
    format_file_size,
    sanitize_filename,
)
from app.utils.logger import add_log_context, get_orphan_logger, setup_logging


__all__ = [
    "add_log_context",
    "admit_content_length",
    "admit_file",
    "admit_upload",
    "format_file_size",
    "get_orphan_logger",
    "sanitize_filename",
    "setup_logging",
]
