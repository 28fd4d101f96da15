"""
Video upload client.

Sends one video as ``multipart/form-data`` with httpx, reporting progress
through ProgressReader, and turns every failure into an UploadClientError
carrying the server's message.
"""

import logging
import mimetypes
import threading

from pathlib import Path
from typing import Any

import httpx

from app.client.progress import ProgressCallback, ProgressEvent, ProgressReader


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
UPLOAD_PATH = "/api/v1/videos/upload"

# Not registered by every platform's mime database
mimetypes.add_type("video/x-matroska", ".mkv")
mimetypes.add_type("video/quicktime", ".mov")
mimetypes.add_type("video/x-msvideo", ".avi")


class UploadClientError(Exception):
    """
    A failed upload as the caller should see it.

    Attributes:
        message: Human-readable reason
        status_code: HTTP status of the response, None if none was received
        details: ``details`` from the error body, if any
    """

    def __init__(self, message: str, status_code: int | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class UploadCancelledError(UploadClientError):
    """Raised when the caller cancelled the upload mid-transfer."""

    def __init__(self) -> None:
        super().__init__("Upload cancelled")


class VideoUploadClient:
    """
    Client for the NaviStream upload endpoint.

    Example:
        ```python
        with VideoUploadClient("http://localhost:3001", token) as client:
            result = client.upload(
                "clip.mp4",
                title="Test",
                on_progress=lambda event: print(event.percent, event.describe()),
            )
        print(result["video"]["url"])
        ```
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.Client | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
        )
        self._headers = headers

    def __enter__(self) -> "VideoUploadClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    @staticmethod
    def check_upload(path: Path, title: str) -> str:
        """
        Pre-flight checks before any byte is sent.

        Returns:
            Content type guessed from the filename

        Raises:
            UploadClientError: Missing title, missing file or non-video file
        """
        if not title or not title.strip():
            raise UploadClientError("Please enter a video title")
        if not path.is_file():
            raise UploadClientError("Please select a video file")

        content_type, _ = mimetypes.guess_type(path.name)
        if not content_type or not content_type.startswith("video/"):
            raise UploadClientError("Please select a valid video file")
        return content_type

    def upload(
        self,
        path: str | Path,
        title: str,
        description: str = "",
        category: str = "other",
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        """
        Upload a video file.

        Args:
            path: Video file to upload
            title: Video title (required)
            description: Optional description
            category: One of gaming, music, education, entertainment, sports, other
            on_progress: Called with a ProgressEvent after every chunk sent
            cancel_event: Set it from another thread to abort the transfer

        Returns:
            The success body: ``{message, video}``

        Raises:
            UploadCancelledError: If ``cancel_event`` was set during the transfer
            UploadClientError: On any other failure
        """
        path = Path(path)
        content_type = self.check_upload(path, title)
        total_bytes = path.stat().st_size

        with path.open("rb") as handle:
            reader = ProgressReader(
                handle,
                total_bytes,
                on_progress=on_progress,
                cancel_event=cancel_event,
                cancel_error=UploadCancelledError,
            )
            if on_progress is not None:
                on_progress(ProgressEvent(bytes_sent=0, total_bytes=total_bytes))

            try:
                response = self._client.post(
                    UPLOAD_PATH,
                    headers=self._headers,
                    data={"title": title, "description": description, "category": category},
                    files={"video": (path.name, reader, content_type)},
                )
            except UploadCancelledError:
                logger.info("Upload of %s cancelled after %d bytes", path.name, reader.bytes_sent)
                raise
            except httpx.TimeoutException as e:
                raise UploadClientError("Upload timed out") from e
            except httpx.TransportError as e:
                raise UploadClientError("Network error during upload") from e

        return self._parse_response(response)

    @staticmethod
    def _parse_response(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            if response.is_success:
                raise UploadClientError("Invalid response from server", response.status_code) from e
            raise UploadClientError(
                f"Upload failed with status {response.status_code}", response.status_code
            ) from e

        if response.is_success:
            return body

        message = "Upload failed"
        details = None
        if isinstance(body, dict):
            details = body.get("details")
            message = body.get("error") or (details if isinstance(details, str) else None) or message
        raise UploadClientError(str(message), response.status_code, details)
