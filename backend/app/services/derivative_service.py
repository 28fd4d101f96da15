"""
Derivative Service for NaviStream

Playback artifacts derived from every original upload:
- a normalized video (mp4, scaled down to a fixed max width, automatic quality)
- a JPEG thumbnail (400x225, center-cropped)

Each derivative is described by a DerivativeSpec whose transformation string
(``c_fill,h_225,w_400``) is part of the derived object's key::

    derived/<transformation>/<public_id>.<format>

so the URL of a derivative is a pure function of the public id. The upload
request never waits for derivatives: ``thumbnail_url_for`` computes the URL up
front and DerivativeService.generate runs afterwards as a detached background
task. A derivative that failed to generate is logged, never surfaced.
"""

import asyncio
import logging
import shutil
import subprocess
import tempfile

from pathlib import Path

from PIL import Image, ImageOps

from app.config import Settings, get_settings
from app.models.video import DerivativeKind, DerivativeSpec
from app.services.metadata_service import MetadataService
from app.services.storage_service import StorageService, StorageServiceError
from app.utils.logger import add_log_context


logger = logging.getLogger(__name__)

DERIVED_PREFIX = "derived"

THUMBNAIL_FRAME_SECONDS = 1.0
THUMBNAIL_JPEG_QUALITY = 85

TRANSCODE_CRF = "23"
TRANSCODE_TIMEOUT_SECONDS = 900


class TranscodeError(Exception):
    """Raised when ffmpeg fails to produce the normalized video."""


# =============================================================================
# Descriptors and key templates
# =============================================================================


def video_spec(settings: Settings | None = None) -> DerivativeSpec:
    settings = settings or get_settings()
    return DerivativeSpec(
        kind=DerivativeKind.VIDEO,
        format="mp4",
        width=settings.transcode_max_width,
        crop="scale",
        quality="auto",
    )


def thumbnail_spec(settings: Settings | None = None) -> DerivativeSpec:
    settings = settings or get_settings()
    return DerivativeSpec(
        kind=DerivativeKind.THUMBNAIL,
        format="jpg",
        width=settings.thumbnail_width,
        height=settings.thumbnail_height,
        crop="fill",
    )


def derivative_specs(settings: Settings | None = None) -> list[DerivativeSpec]:
    """Derivatives requested for every upload, in generation order."""
    return [video_spec(settings), thumbnail_spec(settings)]


def derived_object_key(public_id: str, spec: DerivativeSpec) -> str:
    return f"{DERIVED_PREFIX}/{spec.transformation}/{public_id}.{spec.format}"


def derived_url(public_id: str, spec: DerivativeSpec, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    return f"{settings.public_base_url}/{derived_object_key(public_id, spec)}"


def thumbnail_url_for(public_id: str, settings: Settings | None = None) -> str:
    """
    Thumbnail URL of an asset, derived only from its public id.

    The same public id always yields a byte-identical URL.
    """
    return derived_url(public_id, thumbnail_spec(settings), settings)


def derived_object_keys(public_id: str, settings: Settings | None = None) -> list[str]:
    """Keys of every derivative of ``public_id``, for deletes and reconciliation."""
    return [derived_object_key(public_id, spec) for spec in derivative_specs(settings)]


# =============================================================================
# Generation
# =============================================================================


class DerivativeService:
    """
    Produces and stores the derivatives of one uploaded video.

    Attributes:
        storage: StorageService used to fetch the original and store derivatives
        metadata: MetadataService used to grab the thumbnail frame
        settings: Application settings (ffmpeg binary, sizes)
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
        self.logger = logging.getLogger(__name__)

    async def generate(self, public_id: str, object_key: str, request_id: str | None = None) -> dict[str, str]:
        """
        Download the original, build every derivative and upload it.

        Works in its own temporary directory, which is always removed.

        Args:
            public_id: Public id of the asset
            object_key: Key of the original upload
            request_id: Id of the upload request, for log correlation

        Returns:
            Mapping of derivative kind to stored object key

        Raises:
            StorageServiceError: If the original cannot be fetched or a derivative stored
            TranscodeError: If ffmpeg fails
            ValueError: If no thumbnail frame can be decoded
        """
        log = add_log_context(self.logger, request_id=request_id, public_id=public_id)
        work_dir = Path(tempfile.mkdtemp(prefix="navistream_derive_"))
        stored: dict[str, str] = {}

        try:
            source = work_dir / f"source{Path(object_key).suffix}"
            await self.storage.download_file(object_key, str(source))

            for spec in derivative_specs(self.settings):
                output = work_dir / f"{spec.kind.value}.{spec.format}"
                if spec.kind == DerivativeKind.VIDEO:
                    await self.transcode(source, output, spec)
                else:
                    await self.render_thumbnail(source, output, spec)

                key = derived_object_key(public_id, spec)
                await self.storage.upload_file(key, str(output), content_type=spec.content_type)
                stored[spec.kind.value] = key
                log.info("Stored %s derivative at %s", spec.kind.value, key)

            return stored
        finally:
            try:
                await asyncio.to_thread(shutil.rmtree, work_dir)
            except OSError as e:
                log.warning("Failed to remove derivative work dir '%s': %s", work_dir, e)

    async def run(self, public_id: str, object_key: str, request_id: str | None = None) -> None:
        """Background-task entry point: generate derivatives, log any failure."""
        log = add_log_context(self.logger, request_id=request_id, public_id=public_id)
        try:
            await self.generate(public_id, object_key, request_id=request_id)
        except (StorageServiceError, TranscodeError, ValueError, OSError):
            log.exception("Derivative generation failed")

    async def transcode(self, source: Path, output: Path, spec: DerivativeSpec) -> Path:
        """
        Normalize the video with ffmpeg: H.264 at CRF 23, AAC audio, never
        wider than ``spec.width`` and never upscaled.
        """
        cmd = [
            self.settings.ffmpeg_binary,
            "-y",
            "-v",
            "error",
            "-i",
            str(source),
            "-vf",
            f"scale='min({spec.width},iw)':-2",
            "-c:v",
            "libx264",
            "-preset",
            "veryfast",
            "-crf",
            TRANSCODE_CRF,
            "-c:a",
            "aac",
            "-movflags",
            "+faststart",
            str(output),
        ]

        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=TRANSCODE_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TranscodeError(f"ffmpeg could not run: {e}") from e

        if result.returncode != 0:
            self.logger.debug("ffmpeg stderr: %s", result.stderr)
            raise TranscodeError(f"ffmpeg failed with code {result.returncode}")
        return output

    async def render_thumbnail(self, source: Path, output: Path, spec: DerivativeSpec) -> Path:
        """Grab a frame about one second in and center-crop it to the thumbnail size."""
        frame = await self.metadata.extract_frame(source, THUMBNAIL_FRAME_SECONDS)

        def _write() -> None:
            image = Image.fromarray(frame)
            fitted = ImageOps.fit(
                image,
                (spec.width, spec.height),
                method=Image.Resampling.LANCZOS,
                centering=(0.5, 0.5),
            )
            fitted.convert("RGB").save(output, format="JPEG", quality=THUMBNAIL_JPEG_QUALITY)

        await asyncio.to_thread(_write)
        return output
