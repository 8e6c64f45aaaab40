"""
FastAPI dependency providers for mediaboard.

This module provides:
- Configuration access
- The process-wide upload pipeline (one EncoderRegistry per process)
"""

from functools import lru_cache

from ..core.config import Settings, settings
from ..core.logging import get_logger
from ..media import ArtifactLayout, EncoderRegistry, FFmpegRunner, UploadOrchestrator

logger = get_logger("api.deps")


def get_settings() -> Settings:
    """
    Get application settings.

    Returns:
        Settings instance
    """
    return settings


@lru_cache(maxsize=1)
def get_pipeline() -> UploadOrchestrator:
    """
    Get the shared upload pipeline.

    Built once so encoder probing and selection happen at most once per
    process.

    Returns:
        UploadOrchestrator instance
    """
    media_config = settings.media
    runner = FFmpegRunner(media_config)
    pipeline = UploadOrchestrator(
        layout=ArtifactLayout(media_config.data_root),
        runner=runner,
        registry=EncoderRegistry(runner, media_config),
        config=media_config,
    )
    logger.info("Upload pipeline created", data_root=media_config.data_root)
    return pipeline
