"""
On-disk artifact layout.

    <root>/uploads/{image,video,animated}/<id>.<ext>
    <root>/previews/{image,animated,video}/<id>.<ext>
    <root>/thumbnails/<id>_{small,med,large}.webp
    <root>/temp/
"""

import os
from pathlib import Path

from .file_types import MediaClass

PIPELINE_CLASSES = (MediaClass.IMAGE, MediaClass.VIDEO, MediaClass.ANIMATED)

THUMBNAIL_SIZES: dict[str, int] = {
    "small": 400,
    "med": 800,
    "large": 1200,
}


class ArtifactLayout:
    """Resolves every artifact path for a content id under one data root."""

    def __init__(self, root: str | os.PathLike = "data"):
        self.root = Path(root)

    @property
    def uploads_root(self) -> Path:
        return self.root / "uploads"

    @property
    def previews_root(self) -> Path:
        return self.root / "previews"

    @property
    def thumbnails_dir(self) -> Path:
        return self.root / "thumbnails"

    @property
    def temp_dir(self) -> Path:
        return self.root / "temp"

    def uploads_dir(self, media_class: MediaClass) -> Path:
        return self.uploads_root / media_class.value

    def previews_dir(self, media_class: MediaClass) -> Path:
        return self.previews_root / media_class.value

    def original_path(self, content_id, media_class: MediaClass, ext: str) -> Path:
        return self.uploads_dir(media_class) / f"{content_id}.{ext}"

    def preview_path(self, content_id, media_class: MediaClass, ext: str) -> Path:
        return self.previews_dir(media_class) / f"{content_id}.{ext}"

    def thumbnail_path(self, content_id, label: str) -> Path:
        return self.thumbnails_dir / f"{content_id}_{label}.webp"

    def temp_path(self, name: str) -> Path:
        return self.temp_dir / name

    def artifact_folders(self) -> list[Path]:
        """Every folder that can hold an artifact for a content id, in purge order."""
        return [
            self.uploads_dir(MediaClass.IMAGE),
            self.uploads_dir(MediaClass.VIDEO),
            self.uploads_dir(MediaClass.ANIMATED),
            self.previews_dir(MediaClass.IMAGE),
            self.previews_dir(MediaClass.ANIMATED),
            self.previews_dir(MediaClass.VIDEO),
            self.thumbnails_dir,
        ]

    def is_thumbnail_folder(self, folder: Path) -> bool:
        return Path(folder) == self.thumbnails_dir

    def ensure_directories(self) -> None:
        """Create the full folder tree (idempotent)."""
        for folder in [*self.artifact_folders(), self.temp_dir]:
            folder.mkdir(parents=True, exist_ok=True)

    def public_path(self, path: Path) -> str:
        """Path as served to clients, e.g. /data/uploads/image/1.png."""
        relative = Path(path).relative_to(self.root)
        return f"/{self.root.name}/{relative.as_posix()}"

    def storage_usage_bytes(self) -> int:
        """Total size of every file below the data root."""
        total = 0
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for filename in filenames:
                try:
                    total += os.path.getsize(os.path.join(dirpath, filename))
                except FileNotFoundError:
                    continue
        return total
