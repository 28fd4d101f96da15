"""
Upload pipeline error taxonomy for NaviStream.

Every way an upload can fail maps to one UploadPipelineError subclass that
knows the pipeline stage it came from, a machine-readable reason code, the
human-readable message returned to the client and the HTTP status code:

- AdmissionError (400): unsupported type, too large, missing or invalid field.
  User-correctable, raised before anything is written.
- IOFailure (500): the staging area could not receive the upload.
- RemoteUploadFailure (500): durable storage rejected or never acknowledged
  the upload after the bounded retries.
- PersistenceFailure (500): the remote asset exists but its record could not
  be written; the asset is reported as orphaned.

Video record operations have their own small hierarchy rooted at
VideoServiceError, translated to 404 responses by the router.
"""

from typing import Any

from app.models.video import FailureStage


# =============================================================================
# Admission reason codes
# =============================================================================

UNSUPPORTED_TYPE = "UnsupportedType"
TOO_LARGE = "TooLarge"
MISSING_FIELD = "MissingField"
INVALID_CATEGORY = "InvalidCategory"
INVALID_FIELD = "InvalidField"


class UploadPipelineError(Exception):
    """
    Base exception for failed uploads.

    Attributes:
        stage: Pipeline stage the failure is attributed to
        reason: Machine-readable reason code
        message: Human-readable message returned as ``error``
        details: Optional cause detail or list of field errors
        status_code: HTTP status code of the response
    """

    status_code: int = 500

    def __init__(
        self,
        stage: FailureStage,
        reason: str,
        message: str,
        details: str | list[Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.reason = reason
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_response(self) -> dict[str, Any]:
        """Render the error body: ``{error, code, details?}``."""
        body: dict[str, Any] = {"error": self.message, "code": self.reason}
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"{type(self).__name__}(stage={self.stage.value!r}, reason={self.reason!r})"


class AdmissionError(UploadPipelineError):
    """Raised when the Admission Filter rejects an upload."""

    status_code = 400

    def __init__(self, reason: str, message: str, details: str | list[Any] | None = None) -> None:
        super().__init__(FailureStage.ADMISSION, reason, message, details)


class IOFailure(UploadPipelineError):
    """Raised when the upload bytes could not be written to the staging area."""

    def __init__(self, message: str = "Failed to receive video upload", details: str | None = None) -> None:
        super().__init__(FailureStage.STAGING, "IOFailure", message, details)


class RemoteUploadFailure(UploadPipelineError):
    """Raised when durable storage did not accept the upload."""

    def __init__(
        self,
        message: str = "Failed to upload video to cloud storage",
        details: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(FailureStage.REMOTE, "RemoteUploadFailure", message, details)
        self.attempts = attempts


class PersistenceFailure(UploadPipelineError):
    """Raised when the video record could not be written after a successful remote upload."""

    def __init__(
        self,
        message: str = "Failed to upload video",
        details: str | None = None,
        public_id: str | None = None,
    ) -> None:
        super().__init__(FailureStage.PERSISTENCE, "PersistenceFailure", message, details)
        self.public_id = public_id


# =============================================================================
# Video record operation errors
# =============================================================================


class VideoServiceError(Exception):
    """Base exception for video record operations."""

    status_code: int = 500


class VideoNotFoundError(VideoServiceError):
    """Raised when no video exists with the given id."""

    status_code = 404

    def __init__(self, video_id: str) -> None:
        super().__init__("Video not found")
        self.video_id = video_id


class CommentNotFoundError(VideoServiceError):
    """Raised when a comment does not exist or was not written by the caller."""

    status_code = 404

    def __init__(self, comment_id: str) -> None:
        super().__init__("Comment not found or not authorized")
        self.comment_id = comment_id
