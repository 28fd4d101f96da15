"""
Video Pydantic models for NaviStream.

This module defines the types that flow through the media ingestion pipeline
(UploadRequest, StagedFile, RemoteAsset), the derivative descriptors requested
from remote storage, and the persisted VideoRecord with its comments.

Documents are stored in MongoDB with snake_case field names and a string
``_id``; API responses use the camel-case names the web client expects
(``thumbnailURL``, ``publicID``, ``likedBy`` ...).
"""

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_DESCRIPTION: str = "No description provided"

MAX_TITLE_LENGTH: int = 200
MAX_DESCRIPTION_LENGTH: int = 5000
MAX_COMMENT_LENGTH: int = 1000

VIDEO_EXTENSIONS: dict[str, str] = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/x-matroska": ".mkv",
    "video/webm": ".webm",
}


# =============================================================================
# ENUMS
# =============================================================================


class Category(str, Enum):
    """Video categories offered by the upload form."""

    GAMING = "gaming"
    MUSIC = "music"
    EDUCATION = "education"
    ENTERTAINMENT = "entertainment"
    SPORTS = "sports"
    OTHER = "other"


class PipelineState(str, Enum):
    """
    States of one upload request.

    Flow: RECEIVED → ADMITTED → STAGED → REMOTE_UPLOADED → RECORDED → COMPLETED,
    with FAILED reachable from every non-terminal state.
    """

    RECEIVED = "received"
    ADMITTED = "admitted"
    STAGED = "staged"
    REMOTE_UPLOADED = "remote_uploaded"
    RECORDED = "recorded"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureStage(str, Enum):
    """Pipeline stage a failed upload is attributed to."""

    ADMISSION = "admission"
    STAGING = "staging"
    REMOTE = "remote"
    PERSISTENCE = "persistence"


class DerivativeKind(str, Enum):
    """Kinds of playback artifacts derived from an original upload."""

    VIDEO = "video"
    THUMBNAIL = "thumbnail"


# =============================================================================
# PIPELINE MODELS
# =============================================================================


class UploadRequest(BaseModel):
    """
    Typed upload request built from the multipart form.

    Only exists once the Admission Filter has accepted the form, so every
    downstream component can rely on a trimmed non-empty title and a valid
    category. ``file`` is the raw file handle (a Starlette UploadFile).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    owner_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field(default=DEFAULT_DESCRIPTION, max_length=MAX_DESCRIPTION_LENGTH)
    category: Category = Field(default=Category.OTHER)
    file: Any = Field(default=None, exclude=True, repr=False)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v: Any) -> Any:
        if v is None:
            return DEFAULT_DESCRIPTION
        if isinstance(v, str):
            return v.strip() or DEFAULT_DESCRIPTION
        return v


class StagedFile(BaseModel):
    """
    Raw upload bytes held in the staging area.

    ``local_path`` lives inside ``scratch_dir``, a directory created for this
    request alone; releasing the staged file removes both.
    """

    model_config = ConfigDict(frozen=True)

    local_path: Path
    scratch_dir: Path
    size_bytes: int = Field(..., ge=0)
    declared_mime_type: str
    original_filename: str

    @property
    def extension(self) -> str:
        """
        Extension used for the stored object, including the dot.

        The sanitized staging name is used when it ends in a known video
        extension; anything else falls back to the declared MIME type.
        """
        suffix = self.local_path.suffix.lower()
        if suffix in VIDEO_EXTENSIONS.values():
            return suffix
        return VIDEO_EXTENSIONS.get(self.declared_mime_type, "")


class RemoteAsset(BaseModel):
    """
    Result of a durable remote upload.

    ``public_id`` is the unique storage identifier; ``object_key`` the key of
    the original bytes. Immutable once returned.
    """

    model_config = ConfigDict(frozen=True)

    public_id: str = Field(..., min_length=1)
    object_key: str = Field(..., min_length=1)
    secure_url: str = Field(..., min_length=1)
    thumbnail_url: str = Field(..., min_length=1)
    duration_seconds: float = Field(default=0.0, ge=0)
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)
    size_bytes: int = Field(default=0, ge=0)


class DerivativeSpec(BaseModel):
    """
    Descriptor of one derivative requested for an upload.

    The transformation string is a deterministic rendering of the descriptor
    (sorted ``key_value`` pairs), so the same descriptor always maps to the
    same derived object key and URL.
    """

    model_config = ConfigDict(frozen=True)

    kind: DerivativeKind
    format: str = Field(..., min_length=1)
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    crop: str = Field(default="scale")
    quality: str | None = Field(default=None)

    @property
    def transformation(self) -> str:
        parts = {"c": self.crop}
        if self.height is not None:
            parts["h"] = str(self.height)
        if self.quality is not None:
            parts["q"] = self.quality
        if self.width is not None:
            parts["w"] = str(self.width)
        return ",".join(f"{key}_{value}" for key, value in sorted(parts.items()))

    @property
    def content_type(self) -> str:
        if self.kind == DerivativeKind.THUMBNAIL:
            return "image/jpeg" if self.format in ("jpg", "jpeg") else f"image/{self.format}"
        return f"video/{self.format}"


# =============================================================================
# RECORD MODELS
# =============================================================================


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Comment(BaseModel):
    """A comment appended to a video; only its author may remove it."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    author_id: str = Field(..., min_length=1, serialization_alias="author")
    text: str = Field(..., min_length=1, max_length=MAX_COMMENT_LENGTH)
    created_at: datetime = Field(default_factory=_utcnow, serialization_alias="createdAt")


class VideoRecord(BaseModel):
    """
    Canonical persisted description of an uploaded video.

    Created only after the remote asset exists, so ``url``, ``public_id`` and
    ``thumbnail_url`` are never empty. ``views`` only grows and ``liked_by``
    never holds the same user twice.

    Example:
        ```python
        record = VideoRecord.from_upload(request, remote_asset)
        await collection.insert_one(record.to_document())
        return record.to_response()
        ```
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        validation_alias=AliasChoices("_id", "id"),
        serialization_alias="id",
    )
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field(default=DEFAULT_DESCRIPTION, max_length=MAX_DESCRIPTION_LENGTH)
    category: Category = Field(default=Category.OTHER)

    url: str = Field(..., min_length=1)
    thumbnail_url: str = Field(..., min_length=1, serialization_alias="thumbnailURL")
    public_id: str = Field(..., min_length=1, serialization_alias="publicID")
    object_key: str = Field(..., min_length=1)

    duration_seconds: float = Field(default=0.0, ge=0, serialization_alias="duration")
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)

    owner_id: str = Field(..., min_length=1, serialization_alias="owner")
    views: int = Field(default=0, ge=0)
    liked_by: list[str] = Field(default_factory=list, serialization_alias="likedBy")
    comments: list[Comment] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=_utcnow, serialization_alias="createdAt")
    updated_at: datetime = Field(default_factory=_utcnow, serialization_alias="updatedAt")

    @field_validator("liked_by")
    @classmethod
    def dedupe_liked_by(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @classmethod
    def from_upload(cls, request: UploadRequest, asset: RemoteAsset) -> "VideoRecord":
        """Build a fresh record (no views, likes or comments) for an uploaded asset."""
        return cls(
            title=request.title,
            description=request.description,
            category=request.category,
            url=asset.secure_url,
            thumbnail_url=asset.thumbnail_url,
            public_id=asset.public_id,
            object_key=asset.object_key,
            duration_seconds=asset.duration_seconds,
            width=asset.width,
            height=asset.height,
            owner_id=request.owner_id,
        )

    @property
    def likes(self) -> int:
        return len(self.liked_by)

    def to_document(self) -> dict[str, Any]:
        """Render the record as a MongoDB document keyed by ``_id``."""
        document = self.model_dump()
        document["_id"] = document.pop("id")
        return document

    def to_response(self) -> dict[str, Any]:
        """Render the record for API responses using camel-case names."""
        payload = self.model_dump(by_alias=True, mode="json", exclude={"object_key"})
        payload["likes"] = self.likes
        return payload


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================


class VideoUpdate(BaseModel):
    """Editable video details; any other field in the body is rejected."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str | None = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    category: Category | None = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    def changes(self) -> dict[str, Any]:
        """Fields explicitly provided in the request, ready for ``$set``."""
        changes = self.model_dump(exclude_unset=True, exclude_none=True)
        if "category" in changes:
            changes["category"] = Category(changes["category"]).value
        return changes


class CommentCreate(BaseModel):
    """Body of a new comment."""

    text: str = Field(..., min_length=1, max_length=MAX_COMMENT_LENGTH)

    @field_validator("text", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class VideoUploadResponse(BaseModel):
    """Body of a successful upload (201)."""

    message: str = "Video uploaded successfully"
    video: dict[str, Any]


class LikeResponse(BaseModel):
    likes: int
    is_liked: bool = Field(..., serialization_alias="isLiked")


class ViewResponse(BaseModel):
    views: int
