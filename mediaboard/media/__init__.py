"""
Media processing module for mediaboard.

This module turns uploaded files into the artifact set served to clients:
- UploadOrchestrator: Upload, replace and delete flows
- EncoderRegistry: Hardware-aware video encoder selection
- PreviewGenerator / ThumbnailGenerator: Derived artifacts
- ArtifactLifecycleManager: Artifact removal per content id
"""

from .encoders import (
    ENCODER_OPTIONS_MAP,
    ENCODER_PRIORITY_MAP,
    EncoderCapabilityProbe,
    EncoderCapabilitySnapshot,
    EncoderConfig,
    EncoderRegistry,
)

from .errors import (
    DimensionUnavailable,
    FFmpegError,
    FFmpegTimeoutError,
    InvalidUpload,
    MediaPipelineError,
    NoUsableEncoder,
    ToolchainUnavailable,
    UnsupportedMediaType,
)

from .ffmpeg_wrapper import FFmpegRunner, ProcessResult
from .file_types import MediaClass, resolve_file_type
from .layout import THUMBNAIL_SIZES, ArtifactLayout
from .lifecycle import ArtifactLifecycleManager, PurgeReport
from .models import PreviewArtifact, SubFileUpload, ThumbnailSet, UploadResult, VideoMeta
from .pipeline import UploadOrchestrator
from .previews import PreviewGenerator
from .probe import AspectRatioProbe
from .thumbnails import ThumbnailGenerator


__all__ = [
    # Encoders
    "ENCODER_OPTIONS_MAP",
    "ENCODER_PRIORITY_MAP",
    "EncoderCapabilityProbe",
    "EncoderCapabilitySnapshot",
    "EncoderConfig",
    "EncoderRegistry",
    # Errors
    "DimensionUnavailable",
    "FFmpegError",
    "FFmpegTimeoutError",
    "InvalidUpload",
    "MediaPipelineError",
    "NoUsableEncoder",
    "ToolchainUnavailable",
    "UnsupportedMediaType",
    # Toolchain
    "FFmpegRunner",
    "ProcessResult",
    # Layout and types
    "MediaClass",
    "resolve_file_type",
    "THUMBNAIL_SIZES",
    "ArtifactLayout",
    "PreviewArtifact",
    "SubFileUpload",
    "ThumbnailSet",
    "UploadResult",
    "VideoMeta",
    # Pipeline stages
    "AspectRatioProbe",
    "PreviewGenerator",
    "ThumbnailGenerator",
    "ArtifactLifecycleManager",
    "PurgeReport",
    "UploadOrchestrator",
]
