"""
Video API Endpoints for NaviStream

Endpoints:
- POST /upload - Upload a video (multipart: video, title, description, category)
- GET /mine - Videos uploaded by the caller
- GET /liked - Videos the caller likes
- GET /{video_id} - One video
- PUT /{video_id} - Edit title, description or category (owner only)
- DELETE /{video_id} - Delete a video and its stored objects (owner only)
- POST /{video_id}/view - Count a view
- POST /{video_id}/like - Toggle the caller's like
- POST /{video_id}/comments - Add a comment
- DELETE /{video_id}/comments/{comment_id} - Remove the caller's comment

All endpoints require a bearer token; authentication runs before the upload
body is read. Pipeline and record errors are raised as exceptions and turned
into ``{error, ...}`` bodies by the application's exception handlers.
"""

import logging

from functools import lru_cache
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from starlette.datastructures import UploadFile
from starlette.requests import ClientDisconnect

from app.config import Settings, get_settings
from app.core.auth import RequestContext, get_request_context
from app.core.database import get_db_client
from app.core.errors import IOFailure
from app.models.video import (
    CommentCreate,
    LikeResponse,
    VideoUpdate,
    VideoUploadResponse,
    ViewResponse,
)
from app.services.derivative_service import DerivativeService
from app.services.metadata_service import MetadataService
from app.services.orphan_ledger import OrphanLedger
from app.services.remote_asset_service import RemoteAssetService
from app.services.staging_service import StagingStore
from app.services.storage_service import StorageService
from app.services.upload_service import UploadPipeline
from app.services.video_service import VideoService
from app.utils.file_validator import admit_content_length


logger = logging.getLogger(__name__)

router = APIRouter()

UPLOAD_FORM_MAX_FIELDS = 10


# ============================================================================
# Dependency Injection Functions
# ============================================================================


@lru_cache
def get_storage_service() -> StorageService:
    """Shared StorageService; the boto3 client is safe to use from many threads."""
    return StorageService.from_settings(get_settings())


def get_orphan_ledger() -> OrphanLedger:
    # The ledger still logs when the store is unavailable
    try:
        return OrphanLedger(get_db_client().get_orphaned_assets_collection())
    except RuntimeError:
        logger.warning("Orphan ledger running without a database connection")
        return OrphanLedger()


def get_remote_asset_service(
    storage: StorageService = Depends(get_storage_service),
    settings: Settings = Depends(get_settings),
) -> RemoteAssetService:
    return RemoteAssetService(storage, MetadataService(), settings)


def get_video_service(
    remote_assets: RemoteAssetService = Depends(get_remote_asset_service),
    orphans: OrphanLedger = Depends(get_orphan_ledger),
) -> VideoService:
    return VideoService(get_db_client().get_videos_collection(), remote_assets, orphans)


def get_upload_pipeline(
    remote_assets: RemoteAssetService = Depends(get_remote_asset_service),
    videos: VideoService = Depends(get_video_service),
    orphans: OrphanLedger = Depends(get_orphan_ledger),
    settings: Settings = Depends(get_settings),
) -> UploadPipeline:
    return UploadPipeline(StagingStore.from_settings(settings), remote_assets, videos, orphans, settings)


def get_derivative_service(
    storage: StorageService = Depends(get_storage_service),
    settings: Settings = Depends(get_settings),
) -> DerivativeService:
    return DerivativeService(storage, MetadataService(), settings)


# ============================================================================
# Upload
# ============================================================================


@router.post(
    "/upload",
    response_model=VideoUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a video",
    responses={
        400: {"description": "Unsupported type, too large or missing field"},
        401: {"description": "Missing or invalid bearer token"},
        500: {"description": "Staging, storage or persistence failure"},
    },
)
async def upload_video(
    request: Request,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
    derivatives: DerivativeService = Depends(get_derivative_service),
    settings: Settings = Depends(get_settings),
) -> VideoUploadResponse:
    """
    Accept one video and run it through the upload pipeline.

    The declared ``Content-Length`` is checked before the body is read. The
    body is parsed here rather than through ``File``/``Form`` parameters so
    that authentication and the length check run first.

    Derivatives (normalized video and thumbnail) are generated after the
    response is sent; the returned ``thumbnailURL`` is valid before they exist.
    """
    admit_content_length(
        request.headers.get("content-length"),
        settings.max_request_size_bytes,
        settings.max_upload_size_bytes,
    )

    try:
        form = await request.form(max_files=1, max_fields=UPLOAD_FORM_MAX_FIELDS)
    except ClientDisconnect as e:
        logger.warning("Client disconnected during upload", extra={"request_id": ctx.request_id})
        raise IOFailure(details="Client disconnected during upload") from e

    try:
        video = form.get("video")
        run = await pipeline.run(
            ctx,
            video if isinstance(video, UploadFile) else None,
            form.get("title"),
            form.get("description"),
            form.get("category"),
        )
    finally:
        await form.close()

    if settings.enable_derivatives and run.asset is not None:
        background_tasks.add_task(derivatives.run, run.asset.public_id, run.asset.object_key, ctx.request_id)

    return VideoUploadResponse(video=run.record.to_response())


# ============================================================================
# Listings
# ============================================================================


@router.get("/mine", summary="List the caller's videos")
async def list_my_videos(
    ctx: RequestContext = Depends(get_request_context),
    videos: VideoService = Depends(get_video_service),
) -> list[dict[str, Any]]:
    return [record.to_response() for record in await videos.list_by_owner(ctx.user_id)]


@router.get("/liked", summary="List videos the caller likes")
async def list_liked_videos(
    ctx: RequestContext = Depends(get_request_context),
    videos: VideoService = Depends(get_video_service),
) -> list[dict[str, Any]]:
    return [record.to_response() for record in await videos.list_liked_by(ctx.user_id)]


# ============================================================================
# Single video
# ============================================================================


@router.get("/{video_id}", summary="Get a video")
async def get_video(
    video_id: str,
    ctx: RequestContext = Depends(get_request_context),
    videos: VideoService = Depends(get_video_service),
) -> dict[str, Any]:
    return (await videos.get(video_id)).to_response()


@router.put("/{video_id}", summary="Edit a video's details")
async def update_video(
    video_id: str,
    update: VideoUpdate,
    ctx: RequestContext = Depends(get_request_context),
    videos: VideoService = Depends(get_video_service),
) -> dict[str, Any]:
    """Only title, description and category can change, and only by the owner."""
    return (await videos.update_details(video_id, ctx.user_id, update)).to_response()


@router.delete("/{video_id}", summary="Delete a video")
async def delete_video(
    video_id: str,
    ctx: RequestContext = Depends(get_request_context),
    videos: VideoService = Depends(get_video_service),
) -> dict[str, str]:
    await videos.delete(video_id, ctx.user_id, request_id=ctx.request_id)
    return {"message": "Video deleted successfully"}


@router.post("/{video_id}/view", response_model=ViewResponse, summary="Count a view")
async def increment_view(
    video_id: str,
    ctx: RequestContext = Depends(get_request_context),
    videos: VideoService = Depends(get_video_service),
) -> ViewResponse:
    return ViewResponse(views=await videos.increment_view(video_id))


@router.post("/{video_id}/like", response_model=LikeResponse, summary="Toggle a like")
async def toggle_like(
    video_id: str,
    ctx: RequestContext = Depends(get_request_context),
    videos: VideoService = Depends(get_video_service),
) -> LikeResponse:
    likes, is_liked = await videos.toggle_like(video_id, ctx.user_id)
    return LikeResponse(likes=likes, is_liked=is_liked)


@router.post("/{video_id}/comments", status_code=status.HTTP_201_CREATED, summary="Add a comment")
async def add_comment(
    video_id: str,
    body: CommentCreate,
    ctx: RequestContext = Depends(get_request_context),
    videos: VideoService = Depends(get_video_service),
) -> dict[str, Any]:
    comment = await videos.add_comment(video_id, ctx.user_id, body.text)
    return comment.model_dump(by_alias=True, mode="json")


@router.delete("/{video_id}/comments/{comment_id}", summary="Remove a comment")
async def remove_comment(
    video_id: str,
    comment_id: str,
    ctx: RequestContext = Depends(get_request_context),
    videos: VideoService = Depends(get_video_service),
) -> dict[str, str]:
    await videos.remove_comment(video_id, comment_id, ctx.user_id)
    return {"message": "Comment deleted successfully"}
