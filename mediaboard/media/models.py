"""Records passed between media pipeline stages."""

from dataclasses import dataclass, field
from pathlib import Path

from .file_types import MediaClass
from .layout import THUMBNAIL_SIZES


@dataclass
class SubFileUpload:
    """In-flight upload; lives only for the duration of one request."""

    content_id: str
    original_ext: str
    media_class: MediaClass
    buffer: bytes
    original_path: Path
    transcoded_from: MediaClass | None = None


@dataclass
class PreviewArtifact:
    """
    Result of preview generation.

    preview_path is None when no preview file was kept. A preview_scale of
    100 (image/video) or None (animated) means the original is served
    instead.
    """

    preview_path: Path | None
    extension: str | None
    preview_scale: int | None
    preview_size_bytes: int | None = None

    @property
    def kept(self) -> bool:
        return self.preview_path is not None


@dataclass
class ThumbnailSet:
    """Thumbnails written for one content id, keyed by size label."""

    content_id: str
    entries: dict[str, Path] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return set(self.entries) == set(THUMBNAIL_SIZES)


@dataclass
class VideoMeta:
    """Container duration and audio presence; None when probing failed."""

    duration: float | None = None
    has_audio: bool | None = None


@dataclass
class UploadResult:
    """Metadata handed back to the caller for persistence against its post."""

    content_id: str
    media_class: MediaClass
    original_extension: str
    assigned_extension: str | None
    preview_scale: int | None
    deleted_preview: bool
    aspect_ratio: float
    file_size: int
    preview_size: int
    original_path: str
    preview_path: str | None
    thumbnails: list[str] = field(default_factory=list)
    transcoded_from: MediaClass | None = None
    duration: float | None = None
    has_audio: bool | None = None
