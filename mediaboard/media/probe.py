"""
Dimension, aspect ratio and stream metadata probing.

Images and animated WEBP are read with Pillow; GIF, APNG and videos go
through ffprobe on the first video stream.
"""

import asyncio
import json
from pathlib import Path

from PIL import Image

from ..core.logging import get_logger
from .errors import DimensionUnavailable, FFmpegError, ToolchainUnavailable
from .ffmpeg_wrapper import FFmpegRunner
from .file_types import MediaClass
from .models import SubFileUpload, VideoMeta

logger = get_logger("media.probe")

FFPROBE_DIMENSIONS_CSV = [
    "-v", "error",
    "-select_streams", "v:0",
    "-show_entries", "stream=width,height",
    "-of", "csv=p=0",
]

FFPROBE_DIMENSIONS_JSON = [
    "-v", "error",
    "-select_streams", "v:0",
    "-show_entries", "stream=width,height",
    "-of", "json",
]

FFPROBE_HAS_AUDIO = [
    "-v", "error",
    "-select_streams", "a:0",
    "-show_entries", "stream=codec_type",
    "-of", "default=noprint_wrappers=1:nokey=1",
]

FFPROBE_DURATION = [
    "-v", "error",
    "-show_entries", "format=duration",
    "-of", "default=noprint_wrappers=1:nokey=1",
]

FFPROBE_STREAM_SUMMARY = [
    "-v", "error",
    "-show_entries", "format=duration,stream=codec_type",
    "-of", "json",
]


def _image_size(path: Path) -> tuple[int, int]:
    with Image.open(path) as img:
        return img.size


class AspectRatioProbe:
    """Reads width/height for any pipeline media class."""

    def __init__(self, runner: FFmpegRunner):
        self.runner = runner

    async def ratio(self, sub_file: SubFileUpload) -> float:
        """
        Width divided by height, rounded to 6 decimal places.

        Raises:
            DimensionUnavailable: Width or height missing or zero
        """
        if sub_file.media_class is MediaClass.IMAGE or sub_file.original_ext == "webp":
            try:
                width, height = await asyncio.to_thread(_image_size, sub_file.original_path)
            except OSError as e:
                raise DimensionUnavailable(f"Pillow could not read {sub_file.original_path}: {e}") from e
        elif sub_file.media_class in (MediaClass.ANIMATED, MediaClass.VIDEO):
            width, height = await self._stream_size_csv(sub_file.original_path)
        else:
            raise DimensionUnavailable(f"Unsupported media class: {sub_file.media_class.value}")

        if not width or not height:
            raise DimensionUnavailable(f"Missing dimensions for {sub_file.original_path}")

        return round(width / height, 6)

    async def _stream_size_csv(self, path: Path) -> tuple[int, int]:
        try:
            output = await self.runner.ffprobe([*FFPROBE_DIMENSIONS_CSV, str(path)], "ffprobe:aspect")
        except FFmpegError as e:
            raise DimensionUnavailable(str(e)) from e

        # Some containers report trailing separators, e.g. "1920,1080,"
        parts = [part for part in output.strip().split(",") if part.strip()]
        if len(parts) < 2:
            raise DimensionUnavailable(f"Unexpected ffprobe output: {output.strip()!r}")
        try:
            return int(parts[0]), int(parts[1])
        except ValueError as e:
            raise DimensionUnavailable(f"Unexpected ffprobe output: {output.strip()!r}") from e

    async def dimensions(self, path: Path) -> tuple[int, int]:
        """Width and height of the first video stream."""
        output = await self.runner.ffprobe([*FFPROBE_DIMENSIONS_JSON, str(path)], "ffprobe:dimensions")
        info = json.loads(output or "{}")
        streams = info.get("streams") or []
        if not streams:
            raise DimensionUnavailable("ffprobe did not return any video streams")

        width, height = streams[0].get("width"), streams[0].get("height")
        if not width or not height:
            raise DimensionUnavailable(f"Missing dimensions for {path}")
        return int(width), int(height)

    async def video_meta(self, path: Path) -> VideoMeta:
        """Audio presence and container duration via two independent probes."""
        try:
            audio = await self.runner.ffprobe([*FFPROBE_HAS_AUDIO, str(path)], "ffprobe:audio-check")
            duration = await self.runner.ffprobe([*FFPROBE_DURATION, str(path)], "ffprobe:duration")
            return VideoMeta(
                duration=float(duration.strip()),
                has_audio=audio.strip() == "audio",
            )
        except ToolchainUnavailable:
            raise
        except (FFmpegError, ValueError) as e:
            logger.warning("Video metadata probe failed", path=str(path), error=str(e))
            return VideoMeta()

    async def stream_summary(self, path: Path) -> VideoMeta:
        """Duration and audio presence from a single JSON probe."""
        output = await self.runner.ffprobe([*FFPROBE_STREAM_SUMMARY, str(path)], "ffprobe:summary")
        data = json.loads(output or "{}")
        streams = data.get("streams") or []
        duration = (data.get("format") or {}).get("duration")
        return VideoMeta(
            duration=float(duration) if duration is not None else None,
            has_audio=any(stream.get("codec_type") == "audio" for stream in streams),
        )
