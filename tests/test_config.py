"""
Tests for settings loading and the metrics collector.
"""

import pytest
from pydantic import ValidationError

from mediaboard.core.config import AppConfig, MediaConfig, get_test_settings
from mediaboard.observability.metrics import get_test_metrics


class TestSettings:
    """Test environment-driven configuration."""

    def test_test_settings(self):
        test_settings = get_test_settings()

        assert test_settings.app.environment == "testing"
        assert test_settings.app.log_format == "console"
        assert test_settings.media.video_encoder == "h264"

    def test_media_defaults(self, tmp_path):
        config = MediaConfig(DATA_ROOT=str(tmp_path))

        assert config.process_timeout is None
        assert config.disable_video_previews is False
        assert config.encoder_override is None
        assert (config.animation_quality, config.animation_max_width, config.animation_effort) == (50, 600, 4)
        assert config.max_file_size_bytes == 500 * 1024 * 1024

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("VIDEO_ENCODER", "vp9")
        monkeypatch.setenv("ENCODER_OVERRIDE", "  libvpx-vp9 ")
        monkeypatch.setenv("DISABLE_VIDEO_PREVIEWS", "true")
        monkeypatch.setenv("MEDIA_PROCESS_TIMEOUT", "30")
        monkeypatch.setenv("MEDIA_FFMPEG_BINARY", "/opt/ffmpeg/bin/ffmpeg")

        config = MediaConfig()

        assert config.video_encoder == "vp9"
        assert config.encoder_override == "libvpx-vp9"
        assert config.disable_video_previews is True
        assert config.process_timeout == 30.0
        assert config.ffmpeg_binary == "/opt/ffmpeg/bin/ffmpeg"

    def test_blank_override_is_ignored(self, monkeypatch):
        monkeypatch.setenv("ENCODER_OVERRIDE", "   ")

        assert MediaConfig().encoder_override is None

    @pytest.mark.parametrize("name,value", [("ANIMATION_QUALITY", "0"), ("ANIMATION_EFFORT", "7")])
    def test_animation_bounds(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            MediaConfig()

    def test_cors_origins(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "http://localhost:3000, https://board.example ,")

        assert AppConfig().cors_origin_list == ["http://localhost:3000", "https://board.example"]

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")

        with pytest.raises(ValidationError):
            AppConfig()


class TestMetricsCollector:
    """Test metrics exposition from a private registry."""

    def test_pipeline_metrics_are_exported(self):
        collector = get_test_metrics()

        collector.track_media_stage("image", "preview", True, 0.25)
        collector.track_toolchain_call("ffmpeg", "success", 1.5)
        collector.track_encoder_selected("h264", "libx264")
        collector.track_artifact_purged("thumbnails", True)
        collector.track_artifact_size("image", "original", 2048)

        output = collector.get_metrics().decode()

        assert 'mediaboard_media_processed_total{media_class="image",stage="preview",success="success"} 1.0' in output
        assert 'mediaboard_toolchain_invocations_total{tool="ffmpeg",status="success"} 1.0' in output
        assert 'implementation="libx264"' in output
        assert 'mediaboard_artifacts_purged_total{folder="thumbnails",status="deleted"} 1.0' in output

    def test_collectors_are_isolated(self):
        first = get_test_metrics()
        second = get_test_metrics()

        first.track_artifact_purged("uploads/image", False)

        assert b'status="failed"} 1.0' in first.get_metrics()
        assert b'status="failed"} 1.0' not in second.get_metrics()
