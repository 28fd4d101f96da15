"""
NaviStream upload client.

Uploads a video file to ``POST /api/v1/videos/upload`` and reports byte-level
progress while the request body is sent.
"""

from app.client.progress import ProgressEvent, ProgressReader, render_progress_bar
from app.client.uploader import UploadCancelledError, UploadClientError, VideoUploadClient


__all__ = [
    "ProgressEvent",
    "ProgressReader",
    "UploadCancelledError",
    "UploadClientError",
    "VideoUploadClient",
    "render_progress_bar",
]
