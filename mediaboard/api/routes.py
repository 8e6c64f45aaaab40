"""
API routes for mediaboard.

This module provides:
- Upload, replace and thumbnail replacement endpoints
- Post artifact deletion
- Storage statistics and health check
- Pydantic request/response schemas

Multipart bodies are consumed in order: the form fields are validated
first, then the file is read chunk by chunk against the size limit, and
only then does the pipeline run.
"""

import asyncio
import re
from datetime import datetime
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ..core.config import Settings
from ..core.logging import get_logger, with_logging_context
from ..media import (
    InvalidUpload,
    MediaPipelineError,
    NoUsableEncoder,
    ToolchainUnavailable,
    UploadOrchestrator,
    UploadResult,
)
from .deps import get_pipeline, get_settings

router = APIRouter()
logger = get_logger("api")

POST_ID_PATTERN = re.compile(r"^\d+$")
READ_CHUNK_SIZE = 1024 * 1024
TRUTHY_VALUES = {"1", "true", "yes", "on"}


class CamelModel(BaseModel):
    """Base schema serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadResponse(CamelModel):
    """Upload/replace response schema."""

    status: str = Field(default="success", description="Processing status")
    post_id: int = Field(description="Content identifier")
    media_class: str = Field(description="Media class of the stored original")
    preview_scale: int | None = Field(description="Preview size or width as a percentage of the original")
    aspect_ratio: float = Field(description="Width divided by height, 0 when unknown")
    deleted_preview: bool = Field(description="True when no preview file was kept")
    assigned_ext: str | None = Field(description="Preview file extension")
    trans_type: str | None = Field(default=None, description="Media class the upload was converted to")
    final_ext: str = Field(description="Extension of the stored original")
    file_size: int = Field(description="Original size in bytes")
    preview_size: int = Field(description="Preview size in bytes, original size when no preview")
    preview_path: str | None = Field(description="Public preview path")
    original_path: str = Field(description="Public original path")
    thumbnails: list[str] = Field(default_factory=list, description="Public thumbnail paths")
    duration: float | None = Field(default=None, description="Video duration in seconds")
    has_audio: bool | None = Field(default=None, description="Whether the video has an audio stream")


class ThumbnailResponse(CamelModel):
    """Thumbnail replacement response schema."""

    status: str = Field(default="success", description="Processing status")
    post_id: int = Field(description="Content identifier")
    thumbnails: list[str] = Field(description="Public thumbnail paths")
    complete: bool = Field(description="True when every thumbnail size was written")


class DeletePostsRequest(CamelModel):
    """Delete request schema, accepting a single id or a list."""

    post_id: int | None = Field(default=None, description="Single post ID")
    post_ids: list[int] | None = Field(default=None, description="Post IDs")

    @model_validator(mode="after")
    def require_ids(self):
        if self.post_ids is None and self.post_id is None:
            raise ValueError("Missing or invalid postId(s)")
        return self

    @property
    def ids(self) -> list[int]:
        return self.post_ids if self.post_ids is not None else [self.post_id]


class DeletePostsResponse(CamelModel):
    """Delete response schema."""

    success: bool = Field(description="True when every file could be removed")
    deleted: int = Field(description="Number of post IDs processed")
    files_removed: int = Field(description="Number of files removed")
    failed: list[str] = Field(default_factory=list, description="Paths that could not be removed")


class StatsResponse(CamelModel):
    """Storage statistics response schema."""

    total_mb: float = Field(alias="totalMB", description="Stored data in megabytes")


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str = Field(description="Application status")
    timestamp: datetime = Field(description="Response timestamp")
    version: str = Field(description="Application version")
    environment: str = Field(description="Environment name")
    services: dict[str, str] = Field(description="Service health status")
    encoders: dict[str, str] = Field(default_factory=dict, description="Selected encoder per codec family")


def parse_post_id(post_id: str | None) -> str:
    """Canonical decimal form, so "0042" and 42 name the same files."""
    if not post_id or not POST_ID_PATTERN.match(post_id.strip()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing postId")
    return str(int(post_id.strip()))


def parse_convert_flag(convert: str | None) -> bool:
    return convert is not None and convert.strip().lower() in TRUTHY_VALUES


async def read_upload(file: UploadFile | None, max_bytes: int) -> tuple[bytes, str]:
    """
    Read an uploaded file into memory, enforcing the size limit.

    Returns:
        (buffer, extension without dot)
    """
    if file is None or not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file received")

    chunks = []
    total = 0
    while True:
        chunk = await file.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large (max {max_bytes // (1024 * 1024)} MB)",
            )
        chunks.append(chunk)

    if not total:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file received")

    return b"".join(chunks), Path(file.filename).suffix.lstrip(".")


def pipeline_http_error(exc: MediaPipelineError) -> HTTPException:
    """Map pipeline exceptions onto HTTP status codes."""
    if isinstance(exc, InvalidUpload):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, (ToolchainUnavailable, NoUsableEncoder)):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Media toolchain is not available, check server logs for details",
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to process upload, check server logs for details",
    )


def to_upload_response(result: UploadResult) -> UploadResponse:
    return UploadResponse(
        post_id=int(result.content_id),
        media_class=result.media_class.value,
        preview_scale=result.preview_scale,
        aspect_ratio=result.aspect_ratio,
        deleted_preview=result.deleted_preview,
        assigned_ext=result.assigned_extension,
        trans_type=result.media_class.value if result.transcoded_from else None,
        final_ext=result.original_extension,
        file_size=result.file_size,
        preview_size=result.preview_size,
        preview_path=result.preview_path,
        original_path=result.original_path,
        thumbnails=result.thumbnails,
        duration=result.duration,
        has_audio=result.has_audio,
    )


async def _process_upload(
    request: Request,
    pipeline: UploadOrchestrator,
    settings: Settings,
    post_id: str | None,
    file: UploadFile | None,
    convert: str | None,
    replace: bool,
) -> UploadResponse:
    content_id = parse_post_id(post_id)
    convert_videos = parse_convert_flag(convert)

    with with_logging_context(request_id=getattr(request.state, "request_id", None), content_id=content_id):
        buffer, extension = await read_upload(file, settings.media.max_file_size_bytes)
        logger.info(
            "Upload received",
            extension=extension,
            size=len(buffer),
            convert_videos=convert_videos,
            replace=replace,
        )

        try:
            if replace:
                result = await pipeline.replace(content_id, buffer, extension, convert_videos)
            else:
                result = await pipeline.upload(content_id, buffer, extension, convert_videos)
        except MediaPipelineError as e:
            logger.error("Upload processing failed", error=str(e), error_type=type(e).__name__)
            raise pipeline_http_error(e) from e

        return to_upload_response(result)


@router.post("/upload", response_model=UploadResponse, tags=["Media"])
async def upload_media(
    request: Request,
    post_id: str | None = Form(default=None, alias="postId"),
    file: UploadFile | None = File(default=None),
    convert: str | None = Form(default=None),
    pipeline: UploadOrchestrator = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    """
    Upload a new media file for a post.

    Stores the original and generates the preview and thumbnails.
    """
    return await _process_upload(request, pipeline, settings, post_id, file, convert, replace=False)


@router.post("/replace", response_model=UploadResponse, tags=["Media"])
async def replace_media(
    request: Request,
    post_id: str | None = Form(default=None, alias="postId"),
    file: UploadFile | None = File(default=None),
    convert: str | None = Form(default=None),
    pipeline: UploadOrchestrator = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    """Replace every artifact of a post with a new upload."""
    return await _process_upload(request, pipeline, settings, post_id, file, convert, replace=True)


@router.post("/replace/thumbnail", response_model=ThumbnailResponse, tags=["Media"])
async def replace_thumbnail(
    request: Request,
    post_id: str | None = Form(default=None, alias="postId"),
    file: UploadFile | None = File(default=None),
    pipeline: UploadOrchestrator = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    """Regenerate a post's thumbnails from a supplied image."""
    content_id = parse_post_id(post_id)

    with with_logging_context(request_id=getattr(request.state, "request_id", None), content_id=content_id):
        buffer, extension = await read_upload(file, settings.media.max_file_size_bytes)

        try:
            thumbnails = await pipeline.replace_thumbnail(content_id, buffer, extension)
        except MediaPipelineError as e:
            logger.error("Thumbnail replacement failed", error=str(e))
            raise pipeline_http_error(e) from e

        return ThumbnailResponse(
            post_id=int(content_id),
            thumbnails=[pipeline.layout.public_path(path) for path in thumbnails.entries.values()],
            complete=thumbnails.complete,
        )


@router.post("/delete/posts", response_model=DeletePostsResponse, tags=["Media"])
async def delete_posts(
    request: Request,
    body: DeletePostsRequest,
    pipeline: UploadOrchestrator = Depends(get_pipeline),
):
    """Delete every stored artifact for one or more posts."""
    ids = [str(post_id) for post_id in body.ids]

    with with_logging_context(request_id=getattr(request.state, "request_id", None)):
        reports = await pipeline.delete(ids)

        removed = sum(len(report.deleted) for report in reports.values())
        failed = [str(path) for report in reports.values() for path, _ in report.failed]
        logger.info("Posts deleted", post_ids=ids, files_removed=removed, failed=len(failed))

        return DeletePostsResponse(success=not failed, deleted=len(ids), files_removed=removed, failed=failed)


@router.get("/stats", response_model=StatsResponse, tags=["Stats"])
async def storage_stats(pipeline: UploadOrchestrator = Depends(get_pipeline)):
    """Total size of stored media in megabytes."""
    try:
        total_bytes = await asyncio.to_thread(pipeline.storage_usage_bytes)
    except OSError as e:
        logger.error("Failed to calculate storage usage", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to calculate storage usage"
        )

    return StatsResponse(total_mb=round(total_bytes / (1024 * 1024), 2))


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(
    pipeline: UploadOrchestrator = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    """
    Health check endpoint.

    Reports storage availability and the encoders selected so far. Encoder
    probing is never triggered from here.
    """
    services = {}

    data_root = pipeline.layout.root
    services["storage"] = "healthy" if data_root.is_dir() else "unhealthy"

    snapshot = pipeline.registry.probe.snapshot()
    services["encoders"] = "probed" if snapshot.available_encoders else "pending"

    overall_status = "healthy" if services["storage"] == "healthy" else "degraded"
    logger.debug("Health check completed", status=overall_status, services=services)

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(),
        version=settings.app.version,
        environment=settings.app.environment,
        services=services,
        encoders=pipeline.registry.usable_encoders,
    )
