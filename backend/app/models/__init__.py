"""
Models Package for NaviStream.

Pydantic models for the upload pipeline and the persisted video records.

Models Overview:
    - UploadRequest: Admitted upload (owner, title, description, category, file)
    - StagedFile: Upload bytes held in the local staging area
    - RemoteAsset: Result of a durable upload (public id, URLs, attributes)
    - DerivativeSpec: Descriptor of a derived playback artifact
    - VideoRecord: Canonical persisted description of a video
    - Comment: A comment on a video

Example Usage:
    ```python
    from app.models import VideoRecord

    record = VideoRecord.from_upload(upload_request, remote_asset)
    await videos.insert_one(record.to_document())
    ```
"""

__version__ = "1.0.0"

from app.models.video import (
    DEFAULT_DESCRIPTION,
    MAX_COMMENT_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    Category,
    Comment,
    CommentCreate,
    DerivativeKind,
    DerivativeSpec,
    FailureStage,
    LikeResponse,
    PipelineState,
    RemoteAsset,
    StagedFile,
    UploadRequest,
    VideoRecord,
    VideoUpdate,
    VideoUploadResponse,
    ViewResponse,
)


__all__ = [
    "DEFAULT_DESCRIPTION",
    "MAX_COMMENT_LENGTH",
    "MAX_DESCRIPTION_LENGTH",
    "MAX_TITLE_LENGTH",
    "Category",
    "Comment",
    "CommentCreate",
    "DerivativeKind",
    "DerivativeSpec",
    "FailureStage",
    "LikeResponse",
    "PipelineState",
    "RemoteAsset",
    "StagedFile",
    "UploadRequest",
    "VideoRecord",
    "VideoUpdate",
    "VideoUploadResponse",
    "ViewResponse",
]
