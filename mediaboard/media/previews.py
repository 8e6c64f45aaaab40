"""
Preview generation per media class.

Every public method returns a PreviewArtifact. Failures are logged and
turned into a "no preview" artifact so the upload can finish without one;
only fatal configuration errors (missing toolchain, no usable encoder)
escape.
"""

import asyncio
import math
import time
from pathlib import Path

from PIL import Image, ImageSequence

from ..core.config import MediaConfig, settings
from ..core.logging import get_logger
from ..observability.metrics import metrics
from .encoders import ENCODER_OPTIONS_MAP, EncoderConfig, EncoderRegistry
from .errors import FATAL_ERRORS
from .ffmpeg_wrapper import FFmpegRunner
from .file_types import MediaClass
from .layout import ArtifactLayout
from .models import PreviewArtifact, SubFileUpload
from .probe import AspectRatioProbe

logger = get_logger("media.previews")

DEFAULT_VIDEO_FILTERS = (
    "setparams=colorspace=bt709:color_primaries=bt709:color_trc=bt709,"
    "scale=1280:-2"
)
QSV_SCALE_DIRECTIVE = "scale_qsv=1280:-1"


def round_up_to_multiple(value: int, multiple: int) -> int:
    return int(math.ceil(value / multiple) * multiple)


def scaled_size(width: int, height: int, max_width: int) -> tuple[int, int]:
    """Width-bounded size preserving aspect ratio, never larger than the source."""
    if width <= max_width:
        return width, height
    return max_width, max(1, round(height * max_width / width))


def webp_ready(img: Image.Image) -> Image.Image:
    """Convert to a mode the WEBP encoder accepts."""
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    return img.convert("RGB")


def _render_image_preview(source: Path, target: Path, max_width: int, quality: int) -> tuple[int, int]:
    """Write a WEBP preview; returns (original width, preview width)."""
    with Image.open(source) as img:
        original_width = img.width
        new_size = scaled_size(img.width, img.height, max_width)
        frame = webp_ready(img)
        if new_size != frame.size:
            frame = frame.resize(new_size, Image.Resampling.LANCZOS)
        frame.save(target, "WEBP", quality=quality)
        return original_width, frame.width


def _render_animated_webp(source: Path, target: Path, max_width: int, quality: int, effort: int) -> None:
    """Re-encode an animated WEBP at reduced width."""
    with Image.open(source) as img:
        new_size = scaled_size(img.width, img.height, max_width)
        frames = []
        durations = []
        for frame in ImageSequence.Iterator(img):
            converted = frame.convert("RGBA")
            if new_size != converted.size:
                converted = converted.resize(new_size, Image.Resampling.LANCZOS)
            frames.append(converted)
            durations.append(frame.info.get("duration", img.info.get("duration", 100)))

        frames[0].save(
            target,
            "WEBP",
            save_all=True,
            append_images=frames[1:],
            duration=durations,
            loop=img.info.get("loop", 0),
            quality=quality,
            method=effort,
        )


class PreviewGenerator:
    """Produces the bandwidth-reduced preview for an upload."""

    def __init__(
        self,
        layout: ArtifactLayout,
        runner: FFmpegRunner,
        registry: EncoderRegistry,
        probe: AspectRatioProbe | None = None,
        config: MediaConfig | None = None,
    ):
        self.layout = layout
        self.runner = runner
        self.registry = registry
        self.probe = probe or AspectRatioProbe(runner)
        self.config = config or settings.media

    async def generate(self, sub_file: SubFileUpload) -> PreviewArtifact:
        """Dispatch to the generator for the upload's media class."""
        handlers = {
            MediaClass.IMAGE: self.image,
            MediaClass.ANIMATED: self.animated,
            MediaClass.VIDEO: self.video,
        }
        handler = handlers.get(sub_file.media_class)
        if handler is None:
            logger.error("No preview generator for media class", media_class=sub_file.media_class.value)
            return PreviewArtifact(None, None, None)

        start_time = time.time()
        artifact = await handler(sub_file)
        metrics.track_media_stage(
            sub_file.media_class.value, "preview", artifact.preview_scale is not None, time.time() - start_time
        )
        if artifact.preview_size_bytes:
            metrics.track_artifact_size(sub_file.media_class.value, "preview", artifact.preview_size_bytes)
        return artifact

    async def image(self, sub_file: SubFileUpload) -> PreviewArtifact:
        """
        Resize to the configured max width (no upscaling) and re-encode to WEBP.

        The preview is kept even when it is not smaller than the original.
        """
        preview_path = self.layout.preview_path(sub_file.content_id, MediaClass.IMAGE, "webp")

        try:
            preview_path.parent.mkdir(parents=True, exist_ok=True)
            original_width, preview_width = await asyncio.to_thread(
                _render_image_preview,
                sub_file.original_path,
                preview_path,
                self.config.image_preview_max_width,
                self.config.image_preview_quality,
            )
        except Exception as e:
            logger.error("Image preview failed", content_id=sub_file.content_id, error=str(e))
            _discard(preview_path)
            return PreviewArtifact(None, "webp", None)

        preview_scale = round(preview_width / original_width * 100) if original_width else None

        logger.debug(
            "Image preview written",
            content_id=sub_file.content_id,
            original_width=original_width,
            preview_width=preview_width,
        )

        return PreviewArtifact(
            preview_path=preview_path,
            extension="webp",
            preview_scale=preview_scale,
            preview_size_bytes=preview_path.stat().st_size,
        )

    async def animated(self, sub_file: SubFileUpload) -> PreviewArtifact:
        """
        Compress an animation. Animated WEBP is re-encoded with Pillow, GIF and
        APNG go through gifski.

        When the result is not smaller than the original it is deleted and
        preview_scale is None.
        """
        is_webp = sub_file.original_ext == "webp"
        extension = "webp" if is_webp else "gif"
        preview_path = self.layout.preview_path(sub_file.content_id, MediaClass.ANIMATED, extension)

        try:
            preview_path.parent.mkdir(parents=True, exist_ok=True)
            if is_webp:
                logger.debug("Rendering animation with Pillow", content_id=sub_file.content_id)
                await asyncio.to_thread(
                    _render_animated_webp,
                    sub_file.original_path,
                    preview_path,
                    self.config.animation_max_width,
                    self.config.animation_quality,
                    self.config.animation_effort,
                )
            else:
                logger.debug("Rendering animation with gifski", content_id=sub_file.content_id)
                await self.runner.gifski(
                    [
                        "--quality", str(self.config.animation_quality),
                        "--width", str(self.config.animation_max_width),
                        "-o", str(preview_path),
                        str(sub_file.original_path),
                    ],
                    "gifski:preview",
                )

            if not preview_path.exists():
                raise FileNotFoundError(f"No animated preview produced at {preview_path}")

            original_size = sub_file.original_path.stat().st_size
            preview_size = preview_path.stat().st_size
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.error("Animated preview failed", content_id=sub_file.content_id, error=str(e))
            _discard(preview_path)
            return PreviewArtifact(None, extension, None)

        if preview_size >= original_size:
            logger.info(
                "Animated preview not smaller than original, discarding",
                content_id=sub_file.content_id,
                original_size=original_size,
                preview_size=preview_size,
            )
            _discard(preview_path)
            return PreviewArtifact(None, extension, None)

        return PreviewArtifact(
            preview_path=preview_path,
            extension=extension,
            preview_scale=round(preview_size / original_size * 100),
            preview_size_bytes=preview_size,
        )

    async def video(self, sub_file: SubFileUpload) -> PreviewArtifact:
        """
        Transcode with the best available encoder.

        A preview that is not smaller than the source is deleted and reported
        with preview_scale 100, meaning "serve the original".
        """
        if self.config.disable_video_previews:
            logger.debug("Video previews disabled, skipping encode", content_id=sub_file.content_id)
            return PreviewArtifact(None, None, 100)

        implementation = await self.registry.select_encoder(self.registry.preview_codec_family())
        encoder_config = ENCODER_OPTIONS_MAP[implementation]
        preview_path = self.layout.preview_path(sub_file.content_id, MediaClass.VIDEO, encoder_config.container)

        try:
            preview_path.parent.mkdir(parents=True, exist_ok=True)
            filters = await self.build_filters(encoder_config, sub_file.original_path)
            args = self.build_args(encoder_config, sub_file.original_path, preview_path, filters)
            await self.runner.ffmpeg(args, "ffmpeg:preview")

            if not preview_path.exists():
                raise FileNotFoundError("FFmpeg did not produce a preview file")

            original_size = sub_file.original_path.stat().st_size
            preview_size = preview_path.stat().st_size
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.error(
                "Video preview failed",
                content_id=sub_file.content_id,
                implementation=implementation,
                error=str(e),
            )
            _discard(preview_path)
            return PreviewArtifact(None, encoder_config.container, None)

        if preview_size >= original_size:
            logger.info(
                "Video preview not smaller than original, discarding",
                content_id=sub_file.content_id,
                original_size=original_size,
                preview_size=preview_size,
            )
            _discard(preview_path)
            return PreviewArtifact(None, encoder_config.container, 100)

        return PreviewArtifact(
            preview_path=preview_path,
            extension=encoder_config.container,
            preview_scale=round(preview_size / original_size * 100),
            preview_size_bytes=preview_size,
        )

    async def build_filters(self, encoder_config: EncoderConfig, source: Path) -> str:
        """Filter chain for an encoder; QSV scaling gets hardware-safe input dimensions."""
        encoder_filters = encoder_config.filter_chain

        if encoder_filters and QSV_SCALE_DIRECTIVE in encoder_filters:
            width, height = await self.probe.dimensions(source)
            safe_width = round_up_to_multiple(width, 4)
            safe_height = round_up_to_multiple(height, 2)
            return encoder_filters.replace(QSV_SCALE_DIRECTIVE, f"scale_qsv={safe_width}:{safe_height}")

        return encoder_filters or DEFAULT_VIDEO_FILTERS

    @staticmethod
    def build_args(encoder_config: EncoderConfig, source: Path, target: Path, filters: str) -> list[str]:
        args = ["-y", *encoder_config.input_args, "-i", str(source), "-vf", filters, "-c:v", encoder_config.encoder]

        if encoder_config.quality_flag and encoder_config.quality_value is not None:
            args.extend([encoder_config.quality_flag, str(encoder_config.quality_value)])
        if encoder_config.preset:
            args.extend(["-preset", encoder_config.preset])
        if encoder_config.profile:
            args.extend(["-profile:v", encoder_config.profile])
        args.extend(encoder_config.extra_args)

        args.extend(["-c:a", "libopus", "-b:a", "128k", str(target)])
        return args


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove preview file", path=str(path), error=str(e))
