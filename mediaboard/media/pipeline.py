"""
Upload orchestration.

UploadOrchestrator drives a single upload through the pipeline:

    validate -> write original -> (short/mute video -> animation)
             -> preview -> thumbnails -> aspect ratio -> UploadResult

Stages run strictly in sequence for one upload; separate uploads are
independent coroutines and share only the EncoderRegistry.
"""

import asyncio
import io
import re
import shutil
import time
import uuid
from dataclasses import replace
from pathlib import Path

from PIL import Image, ImageOps

from ..core.config import MediaConfig, settings
from ..core.logging import audit_logger, get_logger, with_logging_context
from ..observability.metrics import metrics
from .encoders import EncoderRegistry
from .errors import FATAL_ERRORS, DimensionUnavailable, InvalidUpload, UnsupportedMediaType
from .ffmpeg_wrapper import FFmpegRunner
from .file_types import MediaClass, normalize_extension, resolve_file_type
from .layout import ArtifactLayout
from .lifecycle import ArtifactLifecycleManager, PurgeReport
from .models import PreviewArtifact, SubFileUpload, ThumbnailSet, UploadResult
from .previews import PreviewGenerator
from .probe import AspectRatioProbe
from .thumbnails import ThumbnailGenerator

logger = get_logger("media.pipeline")

CONTENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def _save_image(buffer: bytes, target: Path) -> None:
    """Decode, apply EXIF orientation and re-save without metadata."""
    with Image.open(io.BytesIO(buffer)) as img:
        img_format = Image.registered_extensions().get(target.suffix.lower()) or img.format
        rotated = ImageOps.exif_transpose(img)

        save_kwargs = {}
        if img_format == "JPEG":
            if rotated.mode not in ("RGB", "L"):
                rotated = rotated.convert("RGB")
            save_kwargs["quality"] = 95
        elif img_format == "WEBP":
            save_kwargs["quality"] = 95

        rotated.save(target, img_format, **save_kwargs)


class UploadOrchestrator:
    """Wires the pipeline stages together around one shared layout and registry."""

    def __init__(
        self,
        layout: ArtifactLayout | None = None,
        runner: FFmpegRunner | None = None,
        registry: EncoderRegistry | None = None,
        config: MediaConfig | None = None,
    ):
        self.config = config or settings.media
        self.layout = layout or ArtifactLayout(self.config.data_root)
        self.runner = runner or FFmpegRunner(self.config)
        self.registry = registry or EncoderRegistry(self.runner, self.config)

        self.probe = AspectRatioProbe(self.runner)
        self.previews = PreviewGenerator(self.layout, self.runner, self.registry, self.probe, self.config)
        self.thumbnails = ThumbnailGenerator(self.layout, self.runner, self.config)
        self.lifecycle = ArtifactLifecycleManager(self.layout)

    def validate(self, content_id, buffer: bytes, extension: str) -> tuple[str, str, MediaClass]:
        """
        Check an upload before anything touches the disk.

        Returns:
            Normalised (content_id, extension, media_class)

        Raises:
            InvalidUpload: Missing id, malformed id or empty payload
            UnsupportedMediaType: Extension outside every media class
        """
        content_id = str(content_id).strip() if content_id is not None else ""
        if not content_id or not CONTENT_ID_PATTERN.match(content_id):
            raise InvalidUpload(f"Invalid content id: {content_id!r}")

        if not buffer:
            raise InvalidUpload("No file received")

        ext = normalize_extension(extension or "")
        media_class = resolve_file_type(ext)
        if media_class is MediaClass.OTHER:
            raise UnsupportedMediaType(f"Unsupported file type: {ext or '(none)'}")

        return content_id, ext, media_class

    async def upload(
        self,
        content_id,
        buffer: bytes,
        extension: str,
        convert_videos: bool = False,
    ) -> UploadResult:
        """Run the full pipeline for one file and describe what was produced."""
        content_id, ext, media_class = self.validate(content_id, buffer, extension)
        start_time = time.time()

        with with_logging_context(content_id=content_id):
            logger.info("Processing upload", media_class=media_class.value, extension=ext, size=len(buffer))

            sub_file = SubFileUpload(
                content_id=content_id,
                original_ext=ext,
                media_class=media_class,
                buffer=buffer,
                original_path=self.layout.original_path(content_id, media_class, ext),
            )
            sub_file = await self.write_original(sub_file, convert_videos)

            preview = await self.previews.generate(sub_file)
            thumbnails = await self.thumbnails.generate(sub_file)

            try:
                aspect_ratio = await self.probe.ratio(sub_file)
            except DimensionUnavailable as e:
                logger.warning("Aspect ratio unavailable, reporting 0", error=str(e))
                aspect_ratio = 0

            result = await self.build_result(sub_file, preview, thumbnails, aspect_ratio)

            processing_time = time.time() - start_time
            metrics.track_media_stage(media_class.value, "upload", True, processing_time)
            metrics.track_artifact_size(sub_file.media_class.value, "original", result.file_size)
            audit_logger.log_media_processed(
                content_id,
                sub_file.media_class.value,
                processing_time,
                preview_scale=result.preview_scale,
                transcoded_from=sub_file.transcoded_from.value if sub_file.transcoded_from else None,
            )
            return result

    async def write_original(self, sub_file: SubFileUpload, convert_videos: bool = False) -> SubFileUpload:
        """Persist the original; may return an updated SubFileUpload."""
        sub_file.original_path.parent.mkdir(parents=True, exist_ok=True)

        if sub_file.media_class is MediaClass.IMAGE:
            try:
                await asyncio.to_thread(_save_image, sub_file.buffer, sub_file.original_path)
            except OSError as e:
                sub_file.original_path.unlink(missing_ok=True)
                raise InvalidUpload(f"Could not decode image: {e}") from e
            logger.debug("Wrote image original", path=str(sub_file.original_path))
            return sub_file

        await asyncio.to_thread(sub_file.original_path.write_bytes, sub_file.buffer)
        logger.debug("Wrote original", path=str(sub_file.original_path))

        if sub_file.media_class is MediaClass.VIDEO and convert_videos:
            return await self.convert_short_video(sub_file)
        return sub_file

    async def convert_short_video(self, sub_file: SubFileUpload) -> SubFileUpload:
        """
        Turn a short, silent video into an animated WEBP so it loops like a GIF.

        Any failure keeps the upload as a video.
        """
        try:
            summary = await self.probe.stream_summary(sub_file.original_path)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.warning("Could not inspect video for conversion", error=str(e))
            return sub_file

        is_short = summary.duration is not None and summary.duration < self.config.short_video_seconds
        if not (is_short and not summary.has_audio):
            return sub_file

        logger.info("Short mute video detected, converting to animation", duration=summary.duration)
        temp_path = self.layout.temp_path(f"{sub_file.content_id}_{uuid.uuid4().hex}.webp")
        target = self.layout.original_path(sub_file.content_id, MediaClass.ANIMATED, "webp")

        try:
            temp_path.parent.mkdir(parents=True, exist_ok=True)
            await self.runner.ffmpeg(
                [
                    "-y",
                    "-i", str(sub_file.original_path),
                    "-vcodec", "libwebp",
                    "-lossless", "0",
                    "-q:v", "80",
                    "-preset", "picture",
                    "-loop", "0",
                    "-an",
                    "-vf", "scale=640:-1:flags=lanczos",
                    str(temp_path),
                ],
                "ffmpeg:animate",
            )
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.move, str(temp_path), str(target))
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.warning("Video to animation conversion failed, keeping video", error=str(e))
            temp_path.unlink(missing_ok=True)
            return sub_file

        sub_file.original_path.unlink(missing_ok=True)
        buffer = await asyncio.to_thread(target.read_bytes)

        return replace(
            sub_file,
            original_ext="webp",
            media_class=MediaClass.ANIMATED,
            buffer=buffer,
            original_path=target,
            transcoded_from=MediaClass.VIDEO,
        )

    async def build_result(
        self,
        sub_file: SubFileUpload,
        preview: PreviewArtifact,
        thumbnails: ThumbnailSet,
        aspect_ratio: float,
    ) -> UploadResult:
        file_size = sub_file.original_path.stat().st_size

        duration = has_audio = None
        if sub_file.media_class is MediaClass.VIDEO:
            meta = await self.probe.video_meta(sub_file.original_path)
            duration, has_audio = meta.duration, meta.has_audio

        return UploadResult(
            content_id=sub_file.content_id,
            media_class=sub_file.media_class,
            original_extension=sub_file.original_ext,
            assigned_extension=preview.extension,
            preview_scale=preview.preview_scale,
            deleted_preview=not preview.kept,
            aspect_ratio=aspect_ratio,
            file_size=file_size,
            preview_size=preview.preview_size_bytes or file_size,
            original_path=self.layout.public_path(sub_file.original_path),
            preview_path=self.layout.public_path(preview.preview_path) if preview.kept else None,
            thumbnails=[self.layout.public_path(path) for path in thumbnails.entries.values()],
            transcoded_from=sub_file.transcoded_from,
            duration=duration,
            has_audio=has_audio,
        )

    async def replace(
        self,
        content_id,
        buffer: bytes,
        extension: str,
        convert_videos: bool = False,
    ) -> UploadResult:
        """Purge everything stored for the id, then upload the new file."""
        content_id, ext, _ = self.validate(content_id, buffer, extension)

        with with_logging_context(content_id=content_id):
            report = await self.lifecycle.purge(content_id)
            logger.info("Purged previous artifacts", deleted=len(report.deleted), failed=len(report.failed))

        return await self.upload(content_id, buffer, ext, convert_videos)

    async def replace_thumbnail(self, content_id, buffer: bytes, extension: str) -> ThumbnailSet:
        """
        Regenerate the thumbnail set from a supplied still image.

        Originals and previews are left untouched.
        """
        content_id, ext, media_class = self.validate(content_id, buffer, extension)
        if media_class is not MediaClass.IMAGE:
            raise UnsupportedMediaType(f"Thumbnails must be images, got: {ext}")

        with with_logging_context(content_id=content_id):
            await self.lifecycle.purge(content_id, thumbnails_only=True)

            temp_path = self.layout.temp_path(f"{content_id}_{uuid.uuid4().hex}.{ext}")
            temp_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                try:
                    await asyncio.to_thread(_save_image, buffer, temp_path)
                except OSError as e:
                    raise InvalidUpload(f"Could not decode image: {e}") from e

                sub_file = SubFileUpload(
                    content_id=content_id,
                    original_ext=ext,
                    media_class=MediaClass.IMAGE,
                    buffer=buffer,
                    original_path=temp_path,
                )
                thumbnails = await self.thumbnails.generate(sub_file)
            finally:
                temp_path.unlink(missing_ok=True)

            logger.info("Replaced thumbnails", written=sorted(thumbnails.entries))
            return thumbnails

    async def delete(self, content_ids) -> dict[str, PurgeReport]:
        """Remove every artifact for each id."""
        return await self.lifecycle.purge_many(content_ids)

    def storage_usage_bytes(self) -> int:
        return self.layout.storage_usage_bytes()
