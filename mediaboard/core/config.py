"""
Configuration management for mediaboard.

This module provides:
- Pydantic Settings for environment variable loading
- Structured configuration classes for the app and the media pipeline
- Validation and type safety for configuration values
- Default values and environment-specific overrides
"""

import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MediaConfig(BaseSettings):
    """Media processing configuration."""
    model_config = SettingsConfigDict(
        env_prefix="MEDIA_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True
    )

    # Storage
    data_root: str = Field(default="data", validation_alias="DATA_ROOT")
    max_file_size_mb: int = Field(default=500, validation_alias="MAX_FILE_SIZE_MB")

    # Toolchain binaries
    ffmpeg_binary: str = Field(default="ffmpeg")
    ffprobe_binary: str = Field(default="ffprobe")
    gifski_binary: str = Field(default="gifski")

    # Child processes run without a timeout unless one is configured
    process_timeout: float | None = Field(default=None, validation_alias="MEDIA_PROCESS_TIMEOUT")

    # Video previews
    disable_video_previews: bool = Field(default=False, validation_alias="DISABLE_VIDEO_PREVIEWS")
    video_encoder: str = Field(
        default="h264",
        validation_alias="VIDEO_ENCODER",
        description="Codec family used for video previews (h264, vp9, av1, h265)"
    )
    encoder_override: str | None = Field(
        default=None,
        validation_alias="ENCODER_OVERRIDE",
        description="Concrete encoder implementation, trusted without capability checks"
    )

    # Animated previews
    animation_quality: int = Field(default=50, validation_alias="ANIMATION_QUALITY")
    animation_effort: int = Field(default=4, validation_alias="ANIMATION_EFFORT")
    animation_max_width: int = Field(default=600, validation_alias="ANIMATION_MAX_WIDTH")

    # Image previews and thumbnails
    image_preview_max_width: int = Field(default=1280)
    image_preview_quality: int = Field(default=90)
    thumbnail_quality: int = Field(default=50)

    # Short & mute videos below this duration may be converted to animations
    short_video_seconds: float = Field(default=5.0)

    @field_validator('encoder_override')
    @classmethod
    def validate_encoder_override(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None

    @field_validator('animation_quality')
    @classmethod
    def validate_animation_quality(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError('Animation quality must be between 1 and 100')
        return v

    @field_validator('animation_effort')
    @classmethod
    def validate_animation_effort(cls, v: int) -> int:
        if not 0 <= v <= 6:
            raise ValueError('Animation effort must be between 0 and 6')
        return v

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


class AppConfig(BaseSettings):
    """Main application configuration."""
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # App metadata
    app_name: str = Field(default="mediaboard", validation_alias="APP_NAME")
    version: str = Field(default="1.0.0", validation_alias="APP_VERSION")
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    debug: bool = Field(default=True, validation_alias="DEBUG")

    # API settings
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=3001, validation_alias="API_PORT")
    api_workers: int = Field(default=1, validation_alias="API_WORKERS")
    cors_origins: str = Field(default="*", validation_alias="CORS_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ['development', 'testing', 'staging', 'production']
        if v not in allowed:
            raise ValueError(f'Environment must be one of: {allowed}')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in allowed:
            raise ValueError(f'Log level must be one of: {allowed}')
        return v.upper()

    @property
    def is_development(self) -> bool:
        return self.environment == 'development'

    @property
    def is_production(self) -> bool:
        return self.environment == 'production'

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


class Settings:
    """Main settings container with all configuration sections."""

    def __init__(self):
        self.app = AppConfig()
        self.media = MediaConfig()


# Global settings instance
settings = Settings()


def get_test_settings() -> Settings:
    """Get test-specific settings with overrides."""

    # Override with test values
    os.environ.update({
        'ENVIRONMENT': 'testing',
        'DEBUG': 'true',
        'LOG_FORMAT': 'console',
    })

    return Settings()
