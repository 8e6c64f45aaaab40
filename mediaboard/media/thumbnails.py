"""
Thumbnail generation.

Three width-bounded WEBP thumbnails are written per content id. Video,
GIF and APNG sources are reduced to a single frame with ffmpeg first;
images and animated WEBP are read directly. Thumbnails are best effort: a failure is logged and the
upload carries on with whatever subset was written.
"""

import asyncio
import io
import time
import uuid
from pathlib import Path

from PIL import Image

from ..core.config import MediaConfig, settings
from ..core.logging import get_logger
from ..observability.metrics import metrics
from .ffmpeg_wrapper import FFmpegRunner
from .file_types import MediaClass
from .layout import THUMBNAIL_SIZES, ArtifactLayout
from .models import SubFileUpload, ThumbnailSet
from .previews import scaled_size, webp_ready

logger = get_logger("media.thumbnails")

FRAME_FILTERS = "setparams=colorspace=bt709:color_primaries=bt709:color_trc=bt709,scale=iw:ih"


def render_thumbnail(frame_bytes: bytes, target: Path, max_width: int, quality: int) -> Path:
    """Decode a frame and write one WEBP thumbnail, never upscaling."""
    with Image.open(io.BytesIO(frame_bytes)) as img:
        img.seek(0)
        frame = webp_ready(img)
        new_size = scaled_size(frame.width, frame.height, max_width)
        if new_size != frame.size:
            frame = frame.resize(new_size, Image.Resampling.LANCZOS)
        frame.save(target, "WEBP", quality=quality)
    return target


def needs_frame_extraction(sub_file: SubFileUpload) -> bool:
    """Video and GIF/APNG go through ffmpeg; Pillow reads stills and animated WEBP."""
    if sub_file.media_class is MediaClass.VIDEO:
        return True
    return sub_file.media_class is MediaClass.ANIMATED and sub_file.original_ext != "webp"


class ThumbnailGenerator:
    """Writes the small/med/large thumbnail set for an upload."""

    def __init__(self, layout: ArtifactLayout, runner: FFmpegRunner, config: MediaConfig | None = None):
        self.layout = layout
        self.runner = runner
        self.config = config or settings.media

    async def generate(self, sub_file: SubFileUpload) -> ThumbnailSet:
        thumbnails = ThumbnailSet(content_id=sub_file.content_id)
        start_time = time.time()
        frame_path = None

        try:
            if needs_frame_extraction(sub_file):
                frame_path = self.layout.temp_path(f"{sub_file.content_id}_{uuid.uuid4().hex}.png")
                await self.extract_frame(sub_file.original_path, frame_path)
                source = frame_path
            else:
                source = sub_file.original_path

            frame_bytes = await asyncio.to_thread(source.read_bytes)
            thumbnails.entries = await self.render_all(sub_file.content_id, frame_bytes)
        except Exception as e:
            logger.error("Thumbnail generation failed", content_id=sub_file.content_id, error=str(e))
        finally:
            if frame_path is not None:
                frame_path.unlink(missing_ok=True)

        metrics.track_media_stage(
            sub_file.media_class.value, "thumbnails", thumbnails.complete, time.time() - start_time
        )
        return thumbnails

    async def extract_frame(self, source: Path, frame_path: Path) -> None:
        """Grab the first frame as PNG, normalised to bt709."""
        frame_path.parent.mkdir(parents=True, exist_ok=True)
        await self.runner.ffmpeg(
            ["-y", "-i", str(source), "-vf", FRAME_FILTERS, "-frames:v", "1", str(frame_path)],
            "ffmpeg:frame",
        )

    async def render_all(self, content_id: str, frame_bytes: bytes) -> dict[str, Path]:
        """Render every size concurrently; returns the labels that succeeded."""
        self.layout.thumbnails_dir.mkdir(parents=True, exist_ok=True)
        labels = list(THUMBNAIL_SIZES)

        results = await asyncio.gather(
            *(
                asyncio.to_thread(
                    render_thumbnail,
                    frame_bytes,
                    self.layout.thumbnail_path(content_id, label),
                    THUMBNAIL_SIZES[label],
                    self.config.thumbnail_quality,
                )
                for label in labels
            ),
            return_exceptions=True,
        )

        entries = {}
        for label, result in zip(labels, results):
            if isinstance(result, Exception):
                logger.warning("Thumbnail size failed", content_id=content_id, label=label, error=str(result))
                continue
            entries[label] = result
        return entries
