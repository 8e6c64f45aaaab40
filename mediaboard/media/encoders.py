"""
Video encoder discovery and selection.

EncoderRegistry owns the two process-wide caches: the host capability
snapshot and the usable-encoder map. Both are filled lazily on first use and
never invalidated while the process lives, so a GPU that appears or
disappears at runtime is only noticed after a restart.
"""

import asyncio
from dataclasses import dataclass, field

from ..core.config import MediaConfig, settings
from ..core.logging import get_logger
from ..observability.metrics import metrics
from .errors import FFmpegError, NoUsableEncoder
from .ffmpeg_wrapper import FFmpegRunner

logger = get_logger("media.encoders")


@dataclass(frozen=True)
class EncoderConfig:
    """Static ffmpeg settings for one encoder implementation."""

    implementation_name: str
    encoder: str
    container: str
    quality_flag: str | None = None
    quality_value: int | None = None
    preset: str | None = None
    profile: str | None = None
    extra_args: tuple[str, ...] = ()
    filter_chain: str | None = None
    input_args: tuple[str, ...] = ()  # Placed before -i (hardware device setup)
    smoke_filter: str | None = None


@dataclass(frozen=True)
class EncoderCapabilitySnapshot:
    """Encoders and hardware acceleration backends reported by the host."""

    available_encoders: frozenset[str] = field(default_factory=frozenset)
    available_hwaccels: frozenset[str] = field(default_factory=frozenset)


QSV_DEVICE_ARGS = ("-init_hw_device", "qsv=hw", "-filter_hw_device", "hw")
VAAPI_DEVICE_ARGS = ("-vaapi_device", "/dev/dri/renderD128")
VAAPI_UPLOAD = "format=nv12,hwupload"

DEFAULT_CODEC_FAMILY = "h264"

ENCODER_PRIORITY_MAP: dict[str, tuple[str, ...]] = {
    "h264": ("h264_nvenc", "h264_qsv", "h264_amf", "h264_vaapi", "libx264"),
    "vp9": ("vp9_qsv", "libvpx-vp9"),
    "av1": ("av1_nvenc", "av1_qsv", "av1_amf", "libsvtav1"),
    "h265": ("hevc_nvenc", "hevc_qsv", "hevc_amf", "hevc_vaapi", "libx265"),
}

_ENCODER_CONFIGS = (
    # H.264
    EncoderConfig("libx264", "libx264", "mp4", "-crf", 26, preset="medium"),
    EncoderConfig("h264_nvenc", "h264_nvenc", "mp4", "-cq", 30, preset="p4", profile="high"),
    EncoderConfig("h264_qsv", "h264_qsv", "mp4", "-crf", 30, preset="medium",
                  input_args=QSV_DEVICE_ARGS),
    EncoderConfig("h264_amf", "h264_amf", "mp4", "-cq", 32, preset="balanced"),
    EncoderConfig("h264_vaapi", "h264_vaapi", "mp4", "-qp", 28,
                  filter_chain=f"{VAAPI_UPLOAD},scale_vaapi=w=1280:h=-2",
                  input_args=VAAPI_DEVICE_ARGS, smoke_filter=VAAPI_UPLOAD),
    # VP9
    EncoderConfig("libvpx-vp9", "libvpx-vp9", "webm", "-crf", 32,
                  extra_args=("-b:v", "0", "-deadline", "realtime", "-cpu-used", "5")),
    EncoderConfig("vp9_qsv", "vp9_qsv", "webm", "-crf", 32, preset="4",
                  extra_args=("-b:v", "3M"),
                  filter_chain="hwupload=extra_hw_frames=64,scale_qsv=1280:-1",
                  input_args=QSV_DEVICE_ARGS),
    # AV1
    EncoderConfig("av1_nvenc", "av1_nvenc", "webm", "-cq", 33, preset="p4"),
    EncoderConfig("av1_qsv", "av1_qsv", "webm", "-crf", 33, preset="medium",
                  input_args=QSV_DEVICE_ARGS),
    EncoderConfig("av1_amf", "av1_amf", "webm", "-cq", 33, preset="balanced"),
    EncoderConfig("libsvtav1", "libsvtav1", "webm", "-crf", 33, preset="5"),
    # H.265
    EncoderConfig("libx265", "libx265", "mp4", "-crf", 26, preset="slow"),
    EncoderConfig("hevc_nvenc", "hevc_nvenc", "mp4", "-cq", 30, preset="p7"),
    EncoderConfig("hevc_qsv", "hevc_qsv", "mp4", "-crf", 28, preset="medium",
                  input_args=QSV_DEVICE_ARGS),
    EncoderConfig("hevc_amf", "hevc_amf", "mp4", "-cq", 28, preset="balanced"),
    EncoderConfig("hevc_vaapi", "hevc_vaapi", "mp4", "-qp", 28,
                  filter_chain=f"{VAAPI_UPLOAD},scale_vaapi=w=1280:h=-2",
                  input_args=VAAPI_DEVICE_ARGS, smoke_filter=VAAPI_UPLOAD),
)

ENCODER_OPTIONS_MAP: dict[str, EncoderConfig] = {
    config.implementation_name: config for config in _ENCODER_CONFIGS
}


def required_hwaccel(implementation_name: str) -> str | None:
    """Hardware backend an implementation depends on, None for software."""
    if "nvenc" in implementation_name:
        return "cuda"
    if "qsv" in implementation_name:
        return "qsv"
    if "vaapi" in implementation_name:
        return "vaapi"
    return None


def parse_encoder_listing(output: str) -> frozenset[str]:
    """
    Parse `ffmpeg -encoders` output.

    Rows look like ` V....D libx264   libx264 H.264 ...`; the header legend
    above the `------` separator is skipped.
    """
    names = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if not in_table:
            if stripped.startswith("---"):
                in_table = True
            continue
        parts = stripped.split()
        if len(parts) >= 2 and len(parts[0]) == 6:
            names.add(parts[1])
    return frozenset(names)


def parse_hwaccel_listing(output: str) -> frozenset[str]:
    """Parse `ffmpeg -hwaccels` output (one backend per line after the header)."""
    backends = set()
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped or stripped.endswith(":"):
            continue
        backends.add(stripped)
    return frozenset(backends)


class EncoderCapabilityProbe:
    """Queries the host toolchain once and memoizes the answer."""

    def __init__(self, runner: FFmpegRunner):
        self.runner = runner
        self._encoders: frozenset[str] | None = None
        self._hwaccels: frozenset[str] | None = None
        self._encoders_lock = asyncio.Lock()
        self._hwaccels_lock = asyncio.Lock()

    async def available_encoders(self) -> frozenset[str]:
        if self._encoders is None:
            async with self._encoders_lock:
                if self._encoders is None:
                    output = await self.runner.introspect("-encoders")
                    self._encoders = parse_encoder_listing(output)
                    logger.info("Encoder capabilities probed", count=len(self._encoders))
        return self._encoders

    async def available_hwaccels(self) -> frozenset[str]:
        if self._hwaccels is None:
            async with self._hwaccels_lock:
                if self._hwaccels is None:
                    output = await self.runner.introspect("-hwaccels")
                    self._hwaccels = parse_hwaccel_listing(output)
                    logger.info("Hardware acceleration probed", hwaccels=sorted(self._hwaccels))
        return self._hwaccels

    def snapshot(self) -> EncoderCapabilitySnapshot:
        """Current cache contents (empty sets for anything not probed yet)."""
        return EncoderCapabilitySnapshot(
            available_encoders=self._encoders or frozenset(),
            available_hwaccels=self._hwaccels or frozenset(),
        )


class EncoderRegistry:
    """
    Picks a working encoder implementation per codec family.

    Construct one instance at process start and share it; selection results
    are cached on the instance for its whole lifetime.
    """

    def __init__(self, runner: FFmpegRunner, config: MediaConfig | None = None,
                 probe: EncoderCapabilityProbe | None = None):
        self.runner = runner
        self.config = config or settings.media
        self.probe = probe or EncoderCapabilityProbe(runner)
        self._usable: dict[str, str] = {}
        self._family_locks: dict[str, asyncio.Lock] = {}

    @property
    def usable_encoders(self) -> dict[str, str]:
        return dict(self._usable)

    def override(self) -> str | None:
        """Operator override if it names a known implementation."""
        override = self.config.encoder_override
        if not override:
            return None
        if override in ENCODER_OPTIONS_MAP:
            return override
        logger.warning(
            "ENCODER_OVERRIDE is not a known encoder, ignoring it",
            override=override,
            known=sorted(ENCODER_OPTIONS_MAP),
        )
        return None

    def preview_codec_family(self) -> str:
        """Configured codec family for video previews, h264 when unsupported."""
        family = (self.config.video_encoder or DEFAULT_CODEC_FAMILY).strip().lower()
        if family not in ENCODER_PRIORITY_MAP:
            logger.warning(
                "Unsupported VIDEO_ENCODER, falling back",
                video_encoder=family,
                fallback=DEFAULT_CODEC_FAMILY,
            )
            return DEFAULT_CODEC_FAMILY
        return family

    async def select_encoder(self, codec_family: str) -> str:
        """
        Resolve a codec family to a concrete, working encoder implementation.

        Raises:
            NoUsableEncoder: No candidate passed every check
            ToolchainUnavailable: ffmpeg itself could not be run
        """
        override = self.override()
        if override:
            logger.debug("Using ENCODER_OVERRIDE", implementation=override)
            return override

        if codec_family in self._usable:
            return self._usable[codec_family]

        candidates = ENCODER_PRIORITY_MAP.get(codec_family)
        if candidates is None:
            raise NoUsableEncoder(f"Unknown codec family: {codec_family}")

        lock = self._family_locks.setdefault(codec_family, asyncio.Lock())
        async with lock:
            if codec_family in self._usable:
                return self._usable[codec_family]

            for implementation in candidates:
                if not await self._hardware_compatible(implementation):
                    continue

                if implementation not in await self.probe.available_encoders():
                    logger.debug("Encoder not compiled into ffmpeg", implementation=implementation)
                    continue

                if not await self._smoke_test(implementation):
                    continue

                self._usable[codec_family] = implementation
                metrics.track_encoder_selected(codec_family, implementation)
                logger.info("Selected encoder", codec_family=codec_family, implementation=implementation)
                return implementation

        raise NoUsableEncoder(f"No usable encoder for codec family '{codec_family}'")

    async def _hardware_compatible(self, implementation: str) -> bool:
        if "amf" in implementation:
            logger.debug("AMF encoders are not supported on this platform", implementation=implementation)
            return False

        backend = required_hwaccel(implementation)
        if backend is None:
            return True

        if backend in await self.probe.available_hwaccels():
            return True

        logger.debug("Hardware backend missing", implementation=implementation, backend=backend)
        return False

    async def _smoke_test(self, implementation: str) -> bool:
        """Encode one second of synthetic video to the null muxer."""
        config = ENCODER_OPTIONS_MAP.get(implementation)
        encoder = config.encoder if config else implementation

        args = ["-hide_banner", "-loglevel", "error", "-y"]
        if config:
            args.extend(config.input_args)
        args.extend(["-f", "lavfi", "-i", "testsrc=duration=1:size=320x240:rate=30"])
        if config and config.smoke_filter:
            args.extend(["-vf", config.smoke_filter])
        args.extend(["-c:v", encoder, "-f", "null", "-"])

        try:
            result = await self.runner.run(self.runner.ffmpeg_binary, args, f"smoke:{implementation}")
        except FFmpegError as e:
            logger.warning("Encoder smoke test did not finish", implementation=implementation, error=str(e))
            return False

        if not result.ok:
            logger.warning(
                "Encoder failed smoke test",
                implementation=implementation,
                returncode=result.returncode,
            )
            return False
        return True
