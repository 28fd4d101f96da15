"""
Remote Asset Uploader for NaviStream

Pushes a staged upload to durable S3-compatible storage and describes the
result as a RemoteAsset. Every upload gets a fresh public id
(``<remote_folder>/<uuid hex>``); the original is stored at
``<public_id><extension>``. The thumbnail URL is computed from the public id,
so nothing here waits on derivative generation.

Retries: only StorageTransientError (connection drops, timeouts, throttling,
5xx) is retried, a fixed number of attempts with a short fixed delay. Every
attempt reuses the same object key so a retried upload overwrites instead of
duplicating. Anything else, or running out of attempts, surfaces as
RemoteUploadFailure with the cause attached.
"""

import asyncio
import logging

from urllib.parse import quote
from uuid import uuid4

from app.config import Settings, get_settings
from app.core.errors import RemoteUploadFailure
from app.models.video import RemoteAsset, StagedFile
from app.services.derivative_service import derived_object_keys, thumbnail_url_for
from app.services.metadata_service import MetadataService, VideoProbe
from app.services.storage_service import (
    StorageService,
    StorageServiceError,
    StorageTransientError,
)


logger = logging.getLogger(__name__)


def new_public_id(remote_folder: str) -> str:
    """Generate a unique, namespaced public id."""
    return f"{remote_folder}/{uuid4().hex}"


class RemoteAssetService:
    """
    Uploads staged files and deletes remote assets.

    Attributes:
        storage: StorageService for the media bucket
        metadata: MetadataService used to probe the staged file
        settings: Application settings (folder, retry bound and delay)
    """

    def __init__(
        self,
        storage_service: StorageService,
        metadata_service: MetadataService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.storage = storage_service
        self.metadata = metadata_service or MetadataService()
        self.settings = settings or get_settings()
        self.max_attempts = max(self.settings.remote_upload_max_attempts, 1)
        self.retry_delay = self.settings.remote_upload_retry_delay_seconds
        self.logger = logging.getLogger(__name__)

    async def upload(
        self,
        staged: StagedFile,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> RemoteAsset:
        """
        Upload a staged file and return the resulting RemoteAsset.

        Args:
            staged: The staged upload
            log: Optional context logger of the calling pipeline

        Returns:
            RemoteAsset with public id, playable URL and thumbnail URL

        Raises:
            RemoteUploadFailure: If storage did not accept the upload
        """
        log = log or self.logger
        public_id = new_public_id(self.settings.remote_folder)
        object_key = f"{public_id}{staged.extension}"

        probe = await self._probe(staged, log)

        await self._put_with_retry(staged, object_key, public_id, log)

        asset = RemoteAsset(
            public_id=public_id,
            object_key=object_key,
            secure_url=self.storage.public_url(object_key),
            thumbnail_url=thumbnail_url_for(public_id, self.settings),
            duration_seconds=probe.duration_seconds,
            width=probe.width,
            height=probe.height,
            size_bytes=staged.size_bytes,
        )
        log.info("Uploaded remote asset %s (%d bytes)", public_id, staged.size_bytes)
        return asset

    async def _put_with_retry(
        self,
        staged: StagedFile,
        object_key: str,
        public_id: str,
        log: logging.Logger | logging.LoggerAdapter,
    ) -> None:
        metadata = {"public-id": public_id, "original-filename": quote(staged.original_filename)}

        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.storage.upload_file(
                    object_key,
                    str(staged.local_path),
                    content_type=staged.declared_mime_type,
                    metadata=metadata,
                )
                return
            except StorageTransientError as e:
                if attempt >= self.max_attempts:
                    log.error("Remote upload failed after %d attempts: %s", attempt, e)
                    raise RemoteUploadFailure(details=str(e), attempts=attempt) from e
                log.warning(
                    "Transient storage error on attempt %d/%d, retrying in %.1fs: %s",
                    attempt,
                    self.max_attempts,
                    self.retry_delay,
                    e,
                )
                await asyncio.sleep(self.retry_delay)
            except StorageServiceError as e:
                log.error("Remote upload rejected on attempt %d: %s", attempt, e)
                raise RemoteUploadFailure(details=str(e), attempts=attempt) from e

    async def _probe(self, staged: StagedFile, log: logging.Logger | logging.LoggerAdapter) -> VideoProbe:
        # A file OpenCV cannot read is still stored; its attributes stay at 0
        try:
            return await self.metadata.extract_video_metadata(staged.local_path)
        except (ValueError, FileNotFoundError) as e:
            log.warning("Could not probe %s: %s", staged.local_path, e)
            return VideoProbe()

    def asset_keys(self, public_id: str, object_key: str) -> list[str]:
        """Every object that belongs to an asset: the original and its derivatives."""
        return [object_key, *derived_object_keys(public_id, self.settings)]

    async def delete(self, public_id: str, object_key: str) -> None:
        """
        Delete an asset's original and derivatives.

        Raises:
            StorageServiceError: If storage rejected the delete
        """
        await self.storage.delete_files(self.asset_keys(public_id, object_key))
        self.logger.info("Deleted remote asset %s", public_id)
