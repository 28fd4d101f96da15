"""
Staging Store for NaviStream uploads.

Holds the raw bytes of one upload on local disk while it is pushed to durable
storage. Every staged file lives in its own scratch directory named by a fresh
UUID under the configured staging root, so concurrent uploads never share a
path even when clients send identical filenames.

Lifecycle:
- ``stage`` streams the upload into ``<staging_dir>/<uuid>/<safe filename>``
  with aiofiles, enforcing the size ceiling while writing. On any failure the
  partial file is removed before the error propagates.
- ``release`` deletes the file and its scratch directory. It is idempotent and
  never raises: cleanup trouble is logged so it cannot mask the primary error.
- ``staged`` combines both as an async context manager; the release runs on
  every exit path of the ``async with`` block.
- ``sweep_stale`` removes scratch directories left behind by a crashed process.
"""

import asyncio
import logging
import shutil
import time

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Protocol
from uuid import uuid4

import aiofiles
import aiofiles.os

from app.config import Settings, get_settings
from app.core.errors import TOO_LARGE, AdmissionError, IOFailure
from app.models.video import StagedFile
from app.utils.file_validator import sanitize_filename, too_large_message


logger = logging.getLogger(__name__)


class AsyncReadable(Protocol):
    """Anything with an awaitable ``read(size)``, such as Starlette's UploadFile."""

    async def read(self, size: int = -1) -> bytes: ...


class StagingStore:
    """
    Scoped temporary holding area for raw upload bytes.

    Attributes:
        root: Directory under which per-upload scratch directories are created
        chunk_size: Bytes read from the source per write
        max_size: Ceiling enforced while writing (inclusive)

    Example:
        ```python
        store = StagingStore.from_settings(get_settings())
        async with store.staged(upload_file, upload_file.filename, "video/mp4") as staged:
            await uploader.upload(staged)
        # staged.local_path no longer exists here
        ```
    """

    def __init__(self, root: str | Path, chunk_size: int = 1024 * 1024, max_size: int | None = None) -> None:
        self.root = Path(root)
        self.chunk_size = chunk_size
        self.max_size = max_size

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "StagingStore":
        settings = settings or get_settings()
        return cls(
            root=settings.staging_dir,
            chunk_size=settings.staging_chunk_size_bytes,
            max_size=settings.max_upload_size_bytes,
        )

    def ensure_root(self) -> Path:
        """Create the staging root if needed and return it."""
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    async def stage(
        self,
        source: AsyncReadable,
        filename: str | None,
        content_type: str,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> StagedFile:
        """
        Stream ``source`` into a fresh scratch directory.

        Args:
            source: Async readable upload stream
            filename: Client-supplied filename (sanitized before use)
            content_type: Declared MIME type, carried on the StagedFile
            log: Optional context logger of the calling pipeline

        Returns:
            StagedFile describing the written bytes

        Raises:
            AdmissionError: TooLarge if the stream exceeds the ceiling
            IOFailure: If the stream or the disk failed mid-transfer
        """
        log = log or logger
        scratch_dir = self.root / uuid4().hex
        local_path = scratch_dir / sanitize_filename(filename)
        written = 0

        try:
            await aiofiles.os.makedirs(scratch_dir, exist_ok=False)
            async with aiofiles.open(local_path, "wb") as out:
                while chunk := await source.read(self.chunk_size):
                    written += len(chunk)
                    if self.max_size is not None and written > self.max_size:
                        raise AdmissionError(TOO_LARGE, too_large_message(self.max_size))
                    await out.write(chunk)
        except AdmissionError:
            log.warning("Upload exceeded %d bytes while staging, aborting", self.max_size)
            await self._remove(local_path, scratch_dir, log)
            raise
        except (OSError, ValueError) as e:
            log.exception("Failed to stage upload after %d bytes", written)
            await self._remove(local_path, scratch_dir, log)
            raise IOFailure(details=str(e)) from e

        log.debug("Staged %d bytes at %s", written, local_path)
        return StagedFile(
            local_path=local_path,
            scratch_dir=scratch_dir,
            size_bytes=written,
            declared_mime_type=content_type,
            original_filename=filename or local_path.name,
        )

    async def release(
        self,
        staged: StagedFile | None,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> bool:
        """
        Delete a staged file and its scratch directory.

        Safe to call with None, twice, or on a file that was never fully
        written. Never raises.

        Returns:
            True if something was removed, False if nothing was left
        """
        if staged is None:
            return False
        return await self._remove(staged.local_path, staged.scratch_dir, log or logger)

    @asynccontextmanager
    async def staged(
        self,
        source: AsyncReadable,
        filename: str | None,
        content_type: str,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> AsyncIterator[StagedFile]:
        """Stage ``source`` for the duration of the ``async with`` block."""
        staged = await self.stage(source, filename, content_type, log=log)
        try:
            yield staged
        finally:
            await self.release(staged, log=log)

    async def _remove(
        self,
        local_path: Path,
        scratch_dir: Path,
        log: logging.Logger | logging.LoggerAdapter,
    ) -> bool:
        removed = False
        try:
            if await aiofiles.os.path.exists(local_path):
                await aiofiles.os.remove(local_path)
                removed = True
            if await aiofiles.os.path.isdir(scratch_dir):
                await aiofiles.os.rmdir(scratch_dir)
                removed = True
        except OSError as e:
            log.warning("Failed to clean up staged file '%s': %s", local_path, e)
            return removed

        if removed:
            log.debug("Released staged file %s", local_path)
        return removed

    def sweep_stale(self, max_age_seconds: int) -> int:
        """
        Remove scratch directories older than ``max_age_seconds``.

        Only run at startup, before any upload is accepted.

        Returns:
            Number of scratch directories removed
        """
        if not self.root.is_dir():
            return 0

        cutoff = time.time() - max_age_seconds
        removed = 0
        for entry in self.root.iterdir():
            try:
                if entry.is_dir() and entry.stat().st_mtime < cutoff:
                    shutil.rmtree(entry)
                    removed += 1
            except OSError as e:
                logger.warning("Failed to sweep stale staging entry '%s': %s", entry, e)

        if removed:
            logger.info("Swept %d stale staged uploads from %s", removed, self.root)
        return removed

    async def sweep_stale_async(self, max_age_seconds: int) -> int:
        return await asyncio.to_thread(self.sweep_stale, max_age_seconds)
