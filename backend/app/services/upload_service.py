"""
NaviStream Upload Pipeline

Sequences one video upload from the parsed request to the stored record:

    Received -> Admitted -> Staged -> RemoteUploaded -> Recorded -> Completed

Any non-terminal state can fall into Failed(stage, reason):

- Received -> Admitted: the admission rules accept the file part (type, then
  size) and the companion fields (title, category). Rejection is a 400 with
  no side effects.
- Admitted -> Staged: the bytes are written to a request-unique scratch
  directory. An I/O failure or a client abort mid-transfer is a 500 IOFailure.
- Staged -> RemoteUploaded: durable storage accepts the file, with bounded
  retries of transient errors. Failure is a 500 RemoteUploadFailure.
- RemoteUploaded -> Recorded: the VideoRecord is inserted. Failure is a 500
  PersistenceFailure and the remote asset is written to the orphan ledger
  instead of being deleted synchronously.
- Recorded -> Completed: the staged file is gone.

The staged file is released in a ``finally`` block once staging succeeded, so
it is removed on every way out of the pipeline. Release problems are logged
and never replace the primary error.

The pipeline holds no state between requests. Each call builds its own
PipelineRun, so concurrent uploads share only the storage service and the
metadata store.
"""

import logging

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.config import Settings, get_settings
from app.core.auth import RequestContext
from app.core.errors import PersistenceFailure, RemoteUploadFailure, UploadPipelineError
from app.models.video import FailureStage, PipelineState, RemoteAsset, StagedFile, VideoRecord
from app.services.orphan_ledger import OrphanLedger
from app.services.remote_asset_service import RemoteAssetService
from app.services.staging_service import StagingStore
from app.services.video_service import VideoService
from app.utils.file_validator import admit_file, admit_upload, normalize_content_type
from app.utils.logger import ContextLoggerAdapter, add_log_context


logger = logging.getLogger(__name__)


# Stage a failure is attributed to when it escapes while in a given state
FAILURE_STAGE_BY_STATE: dict[PipelineState, FailureStage] = {
    PipelineState.RECEIVED: FailureStage.ADMISSION,
    PipelineState.ADMITTED: FailureStage.STAGING,
    PipelineState.STAGED: FailureStage.REMOTE,
    PipelineState.REMOTE_UPLOADED: FailureStage.PERSISTENCE,
    PipelineState.RECORDED: FailureStage.PERSISTENCE,
}


class PipelineRun(BaseModel):
    """
    Progress of one upload through the pipeline.

    ``history`` lists every state entered, in order. ``record`` is set once
    the run reaches Recorded.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request_id: str
    state: PipelineState = PipelineState.RECEIVED
    history: list[PipelineState] = Field(default_factory=lambda: [PipelineState.RECEIVED])
    failed_stage: FailureStage | None = None
    failure_reason: str | None = None
    asset: RemoteAsset | None = None
    record: VideoRecord | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (PipelineState.COMPLETED, PipelineState.FAILED)

    def advance(self, state: PipelineState) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Pipeline run {self.request_id} already ended in {self.state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, stage: FailureStage, reason: str) -> None:
        if self.is_terminal:
            return
        self.failed_stage = stage
        self.failure_reason = reason
        self.state = PipelineState.FAILED
        self.history.append(PipelineState.FAILED)


class UploadPipeline:
    """
    Orchestrates admission, staging, remote upload and recording.

    Attributes:
        staging: StagingStore for raw upload bytes
        remote_assets: RemoteAssetService pushing staged files to storage
        videos: VideoService writing the VideoRecord
        orphans: OrphanLedger for assets whose record could not be written
        settings: Application settings (MIME whitelist, size ceiling)

    Example:
        ```python
        pipeline = UploadPipeline(staging, remote_assets, videos, orphans)
        run = await pipeline.run(ctx, upload_file, title="Test")
        return run.record.to_response()
        ```
    """

    def __init__(
        self,
        staging: StagingStore,
        remote_asset_service: RemoteAssetService,
        video_service: VideoService,
        orphan_ledger: OrphanLedger | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.staging = staging
        self.remote_assets = remote_asset_service
        self.videos = video_service
        self.orphans = orphan_ledger or OrphanLedger()
        self.settings = settings or get_settings()
        self.logger = logging.getLogger(__name__)

    async def run(
        self,
        ctx: RequestContext,
        file: Any,
        title: Any,
        description: Any = None,
        category: Any = None,
        pipeline_run: PipelineRun | None = None,
    ) -> PipelineRun:
        """
        Run one upload to completion or failure.

        Args:
            ctx: Request-scoped context of the authenticated caller
            file: The uploaded file part (an UploadFile), or None when absent
            title: Raw ``title`` form value
            description: Raw ``description`` form value
            category: Raw ``category`` form value
            pipeline_run: Run to track progress on; a new one is created if omitted

        Returns:
            The completed PipelineRun, carrying the new VideoRecord

        Raises:
            UploadPipelineError: The failure, already recorded on the run
        """
        pipeline_run = pipeline_run or PipelineRun(request_id=ctx.request_id)
        log = add_log_context(self.logger, request_id=ctx.request_id, user_id=ctx.user_id)

        try:
            await self._execute(ctx, file, title, description, category, pipeline_run, log)
        except UploadPipelineError as e:
            pipeline_run.fail(e.stage, e.reason)
            log.warning(
                "Upload failed at %s: %s (%s)",
                e.stage.value,
                e.reason,
                e.message,
                extra={"stage": e.stage.value},
            )
            raise
        except Exception as e:
            stage = FAILURE_STAGE_BY_STATE.get(pipeline_run.state, FailureStage.PERSISTENCE)
            pipeline_run.fail(stage, type(e).__name__)
            log.exception("Unexpected error during upload at %s", stage.value, extra={"stage": stage.value})
            raise

        log.info(
            "Upload completed as video %s",
            pipeline_run.record.id if pipeline_run.record else None,
            extra={"public_id": pipeline_run.asset.public_id if pipeline_run.asset else None},
        )
        return pipeline_run

    async def _execute(
        self,
        ctx: RequestContext,
        file: Any,
        title: Any,
        description: Any,
        category: Any,
        pipeline_run: PipelineRun,
        log: ContextLoggerAdapter,
    ) -> None:
        # Received -> Admitted
        if file is not None:
            admit_file(
                getattr(file, "content_type", None),
                getattr(file, "size", None),
                self.settings.allowed_video_mime_types,
                self.settings.max_upload_size_bytes,
            )
        request = admit_upload(ctx.user_id, file, title, description, category)
        pipeline_run.advance(PipelineState.ADMITTED)
        log.debug("Upload admitted: title=%r category=%s", request.title, request.category.value)

        # Admitted -> Staged
        staged: StagedFile | None = None
        try:
            staged = await self.staging.stage(
                file,
                getattr(file, "filename", None),
                normalize_content_type(getattr(file, "content_type", None)),
                log=log.bind(stage=FailureStage.STAGING.value),
            )
            pipeline_run.advance(PipelineState.STAGED)

            # Staged -> RemoteUploaded
            try:
                asset = await self.remote_assets.upload(staged, log=log.bind(stage=FailureStage.REMOTE.value))
            except UploadPipelineError:
                raise
            except Exception as e:
                log.exception("Unexpected error during remote upload", extra={"stage": FailureStage.REMOTE.value})
                raise RemoteUploadFailure(details=str(e)) from e
            pipeline_run.asset = asset
            pipeline_run.advance(PipelineState.REMOTE_UPLOADED)

            # RemoteUploaded -> Recorded
            try:
                record = await self.videos.record(
                    asset, request, log=log.bind(stage=FailureStage.PERSISTENCE.value, public_id=asset.public_id)
                )
            except Exception as e:
                await self._record_orphan(ctx, asset, e)
                if isinstance(e, PersistenceFailure):
                    raise
                raise PersistenceFailure(details=str(e), public_id=asset.public_id) from e
            pipeline_run.record = record
            pipeline_run.advance(PipelineState.RECORDED)
        finally:
            await self.staging.release(staged, log=log)

        # Recorded -> Completed
        pipeline_run.advance(PipelineState.COMPLETED)

    async def _record_orphan(self, ctx: RequestContext, asset: RemoteAsset, error: Exception) -> None:
        await self.orphans.record(
            public_id=asset.public_id,
            object_keys=self.remote_assets.asset_keys(asset.public_id, asset.object_key),
            owner_id=ctx.user_id,
            reason=f"Video record write failed: {error}",
            request_id=ctx.request_id,
        )
