"""
Video Metadata Service for NaviStream

Probes staged and downloaded video files with OpenCV: resolution, frame rate,
frame count, duration and codec. Also grabs single frames for thumbnail
generation. All OpenCV work runs in a worker thread so a slow decode never
blocks the event loop.
"""

import asyncio
import logging

from pathlib import Path

import cv2
import numpy as np

from pydantic import BaseModel, ConfigDict


class VideoProbe(BaseModel):
    """Properties read from a video container."""

    model_config = ConfigDict(frozen=True)

    width: int = 0
    height: int = 0
    frame_rate: float = 0.0
    frame_count: int = 0
    duration_seconds: float = 0.0
    codec: str = ""


class MetadataService:
    """
    OpenCV-backed metadata extraction for uploaded videos.

    Example:
        service = MetadataService()
        probe = await service.extract_video_metadata("/tmp/staging/abc/clip.mp4")
        print(probe.duration_seconds)
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)

    async def extract_video_metadata(self, file_path: str | Path) -> VideoProbe:
        """
        Extract resolution, frame rate, frame count, codec and duration.

        Duration is computed from frame count and frame rate; a container that
        reports no frame rate yields a duration of 0.

        Args:
            file_path: Path to the video file

        Returns:
            VideoProbe with the extracted properties

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If OpenCV cannot open the file as a video
        """
        return await asyncio.to_thread(self._probe, str(file_path))

    async def extract_frame(self, file_path: str | Path, at_seconds: float = 1.0) -> np.ndarray:
        """
        Return one decoded frame as an RGB array.

        Seeks to ``at_seconds`` (clamped to the video's length) and falls back
        to the first frame when seeking fails, as it does for very short clips.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If no frame can be decoded
        """
        return await asyncio.to_thread(self._read_frame, str(file_path), at_seconds)

    def _probe(self, file_path: str) -> VideoProbe:
        if not Path(file_path).is_file():
            raise FileNotFoundError(f"Video file not found: {file_path}")

        cap = cv2.VideoCapture(file_path)
        try:
            if not cap.isOpened():
                raise ValueError(f"Cannot open video file: {file_path}")

            width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
            frame_rate = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
            frame_count = max(int(cap.get(cv2.CAP_PROP_FRAME_COUNT)), 0)

            # FourCC is packed little-endian into an int
            fourcc_int = int(cap.get(cv2.CAP_PROP_FOURCC))
            codec = "".join(chr((fourcc_int >> 8 * i) & 0xFF) for i in range(4)).strip("\x00 ")

            duration = frame_count / frame_rate if frame_rate > 0 else 0.0
        except cv2.error as e:
            raise ValueError(f"Error extracting video metadata: {e}") from e
        finally:
            cap.release()

        probe = VideoProbe(
            width=width,
            height=height,
            frame_rate=round(frame_rate, 2),
            frame_count=frame_count,
            duration_seconds=round(duration, 3),
            codec=codec,
        )
        self.logger.debug(
            "Probed %s: %dx%d @ %.2ffps, %.3fs, %s",
            file_path,
            width,
            height,
            frame_rate,
            duration,
            codec or "unknown codec",
        )
        return probe

    def _read_frame(self, file_path: str, at_seconds: float) -> np.ndarray:
        if not Path(file_path).is_file():
            raise FileNotFoundError(f"Video file not found: {file_path}")

        cap = cv2.VideoCapture(file_path)
        try:
            if not cap.isOpened():
                raise ValueError(f"Cannot open video file: {file_path}")

            frame_rate = cap.get(cv2.CAP_PROP_FPS) or 0.0
            frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
            if frame_rate > 0 and frame_count > 0:
                target = min(int(at_seconds * frame_rate), frame_count - 1)
                cap.set(cv2.CAP_PROP_POS_FRAMES, max(target, 0))

            ok, frame = cap.read()
            if not ok or frame is None:
                cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
                ok, frame = cap.read()
            if not ok or frame is None:
                raise ValueError(f"No decodable frame in {file_path}")

            return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        except cv2.error as e:
            raise ValueError(f"Error reading frame from {file_path}: {e}") from e
        finally:
            cap.release()
