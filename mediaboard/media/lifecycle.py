"""
Artifact removal for content ids.

Purging never raises: every attempted deletion is recorded in a PurgeReport
together with the OSError it produced, if any.
"""

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path

from ..core.logging import audit_logger, get_logger
from ..observability.metrics import metrics
from .layout import THUMBNAIL_SIZES, ArtifactLayout

logger = get_logger("media.lifecycle")


@dataclass
class PurgeReport:
    """Outcome of a purge: (path, error) per attempted deletion."""

    content_id: str
    attempts: list[tuple[Path, OSError | None]] = field(default_factory=list)

    @property
    def deleted(self) -> list[Path]:
        return [path for path, error in self.attempts if error is None]

    @property
    def failed(self) -> list[tuple[Path, OSError]]:
        return [(path, error) for path, error in self.attempts if error is not None]

    @property
    def ok(self) -> bool:
        return not self.failed


def matches_content_id(filename: str, content_id: str) -> bool:
    """True for `<id>.<anything>`; `123.png` does not match id `12`."""
    return filename.startswith(content_id) and filename[len(content_id):len(content_id) + 1] == "."


def thumbnail_names(content_id: str) -> set[str]:
    return {f"{content_id}_{label}.webp" for label in THUMBNAIL_SIZES}


class ArtifactLifecycleManager:
    """Deletes every artifact that belongs to a content id."""

    def __init__(self, layout: ArtifactLayout):
        self.layout = layout

    async def purge(self, content_id: str, thumbnails_only: bool = False) -> PurgeReport:
        """
        Remove originals, previews and thumbnails for a content id.

        Args:
            content_id: Identifier whose files should go
            thumbnails_only: Only remove the three thumbnail files

        Returns:
            PurgeReport listing every deletion attempt
        """
        content_id = str(content_id)
        report = PurgeReport(content_id=content_id)

        folders = [self.layout.thumbnails_dir] if thumbnails_only else self.layout.artifact_folders()
        for folder in folders:
            await asyncio.to_thread(self._purge_folder, folder, content_id, report)

        deleted, failed = len(report.deleted), len(report.failed)
        audit_logger.log_artifacts_purged(content_id, deleted, failed, thumbnails_only=thumbnails_only)
        if failed:
            logger.warning(
                "Some artifacts could not be removed",
                content_id=content_id,
                failed=[str(path) for path, _ in report.failed],
            )
        return report

    async def purge_many(self, content_ids) -> dict[str, PurgeReport]:
        """Purge several ids in turn; one id's failures do not stop the rest."""
        reports = {}
        for content_id in content_ids:
            reports[str(content_id)] = await self.purge(content_id)
        return reports

    def _purge_folder(self, folder: Path, content_id: str, report: PurgeReport) -> None:
        try:
            filenames = os.listdir(folder)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error("Cannot read artifact folder", folder=str(folder), error=str(e))
            report.attempts.append((folder, e))
            return

        if self.layout.is_thumbnail_folder(folder):
            wanted = thumbnail_names(content_id)
            targets = [name for name in filenames if name in wanted]
        else:
            targets = [name for name in filenames if matches_content_id(name, content_id)]

        for name in targets:
            path = folder / name
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error("Failed to delete artifact", path=str(path), error=str(e))
                report.attempts.append((path, e))
                metrics.track_artifact_purged(folder.name, False)
                continue

            report.attempts.append((path, None))
            metrics.track_artifact_purged(folder.name, True)
            logger.debug("Deleted artifact", path=str(path))
