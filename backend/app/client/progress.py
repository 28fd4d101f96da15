"""
Upload progress reporting.

ProgressReader wraps the binary file handed to httpx as the multipart file
part. httpx pulls the body through ``read()``, so every chunk read is a chunk
about to go on the wire; the reader counts it, emits a ProgressEvent and
checks the cancel flag before returning it.
"""

import os
import threading

from collections.abc import Callable
from typing import BinaryIO

from pydantic import BaseModel, ConfigDict, Field

from app.utils.file_validator import format_file_size


class ProgressEvent(BaseModel):
    """Bytes of the file sent so far out of its total size."""

    model_config = ConfigDict(frozen=True)

    bytes_sent: int = Field(..., ge=0)
    total_bytes: int = Field(..., ge=0)

    @property
    def percent(self) -> int:
        if self.total_bytes <= 0:
            return 100
        return min(round(self.bytes_sent / self.total_bytes * 100), 100)

    def describe(self) -> str:
        """
        Example:
            >>> ProgressEvent(bytes_sent=5 * 1024**2, total_bytes=10 * 1024**2).describe()
            'Uploaded 5 MB of 10 MB'
        """
        return f"Uploaded {format_file_size(self.bytes_sent)} of {format_file_size(self.total_bytes)}"


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressReader:
    """
    File wrapper that reports each read and can abort the transfer.

    Args:
        file: Binary file opened for reading
        total_bytes: Size of the file
        on_progress: Called after every chunk read
        cancel_event: When set, the next read raises ``cancel_error()``
        cancel_error: Factory of the exception raised on cancellation
    """

    def __init__(
        self,
        file: BinaryIO,
        total_bytes: int,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
        cancel_error: Callable[[], Exception] | None = None,
    ) -> None:
        self._file = file
        self.total_bytes = total_bytes
        self.bytes_sent = 0
        self.on_progress = on_progress
        self.cancel_event = cancel_event
        self.cancel_error = cancel_error or (lambda: InterruptedError("Upload cancelled"))

    @property
    def name(self) -> str:
        return os.path.basename(getattr(self._file, "name", "upload"))

    def read(self, size: int = -1) -> bytes:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise self.cancel_error()

        chunk = self._file.read(size)
        if chunk:
            self.bytes_sent += len(chunk)
            if self.on_progress is not None:
                self.on_progress(ProgressEvent(bytes_sent=self.bytes_sent, total_bytes=self.total_bytes))
        return chunk

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        position = self._file.seek(offset, whence)
        # A rewind means the body is being sent again
        if position == 0:
            self.bytes_sent = 0
        return position

    def tell(self) -> int:
        return self._file.tell()

    def fileno(self) -> int:
        return self._file.fileno()

    def close(self) -> None:
        self._file.close()


def render_progress_bar(event: ProgressEvent, width: int = 30) -> str:
    """
    Single-line text progress bar.

    Example:
        >>> render_progress_bar(ProgressEvent(bytes_sent=512, total_bytes=1024), width=10)
        '[#####-----]  50% Uploaded 512 Bytes of 1 KB'
    """
    filled = int(width * event.percent / 100)
    bar = "#" * filled + "-" * (width - filled)
    return f"[{bar}] {event.percent:>3}% {event.describe()}"
