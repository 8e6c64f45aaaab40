"""File extension to media class resolution."""

from enum import Enum


class MediaClass(Enum):
    """Media classes handled by the pipeline."""

    IMAGE = "image"
    ANIMATED = "animated"
    VIDEO = "video"
    OTHER = "other"  # Refused by the pipeline


FILE_TYPE_MAP: dict[MediaClass, frozenset[str]] = {
    MediaClass.IMAGE: frozenset({"png", "jpg", "jpeg", "webp", "bmp", "tiff"}),
    MediaClass.ANIMATED: frozenset({"gif", "apng"}),
    MediaClass.VIDEO: frozenset({"mp4", "webm", "mov", "avi", "mkv"}),
}


def normalize_extension(extension: str) -> str:
    """Lowercase an extension and drop any leading dot."""
    return extension.strip().lower().lstrip(".")


def resolve_file_type(extension: str) -> MediaClass:
    """Map a file extension (with or without the dot) to its media class."""
    lowered = normalize_extension(extension)

    for media_class, extensions in FILE_TYPE_MAP.items():
        if lowered in extensions:
            return media_class

    return MediaClass.OTHER
