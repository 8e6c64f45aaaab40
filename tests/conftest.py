"""
Shared fixtures for mediaboard tests.

The environment is pointed at a throwaway data root before any mediaboard
module is imported, so importing the application never touches ./data.
"""

import io
import os
import tempfile

os.environ.setdefault("DATA_ROOT", tempfile.mkdtemp(prefix="mediaboard-test-"))
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
from unittest.mock import AsyncMock, MagicMock
from PIL import Image

from mediaboard.core.config import MediaConfig
from mediaboard.media import ArtifactLayout, FFmpegRunner, ProcessResult


@pytest.fixture
def layout(tmp_path):
    """Artifact layout rooted in a per-test directory."""
    artifact_layout = ArtifactLayout(tmp_path / "data")
    artifact_layout.ensure_directories()
    return artifact_layout


@pytest.fixture
def media_config(tmp_path):
    """Media configuration with defaults and the per-test data root."""
    return MediaConfig(DATA_ROOT=str(tmp_path / "data"))


@pytest.fixture
def runner():
    """Toolchain runner whose child processes are all mocked."""
    mock_runner = MagicMock(spec=FFmpegRunner)
    mock_runner.ffmpeg_binary = "ffmpeg"
    mock_runner.ffprobe_binary = "ffprobe"
    mock_runner.gifski_binary = "gifski"
    mock_runner.run = AsyncMock(return_value=ProcessResult(0, "", ""))
    mock_runner.ffmpeg = AsyncMock(return_value=ProcessResult(0, "", ""))
    mock_runner.ffprobe = AsyncMock(return_value="")
    mock_runner.gifski = AsyncMock(return_value=ProcessResult(0, "", ""))
    mock_runner.introspect = AsyncMock(return_value="")
    return mock_runner


@pytest.fixture
def registry():
    """Encoder registry that always picks libx264 for h264."""
    mock_registry = MagicMock()
    mock_registry.preview_codec_family = MagicMock(return_value="h264")
    mock_registry.select_encoder = AsyncMock(return_value="libx264")
    mock_registry.usable_encoders = {}
    return mock_registry


@pytest.fixture
def image_bytes():
    """Factory for encoded still images."""

    def _make(width=640, height=480, fmt="PNG", mode="RGB", color=(200, 40, 40)):
        img = Image.new(mode, (width, height), color)
        buffer = io.BytesIO()
        img.save(buffer, fmt)
        return buffer.getvalue()

    return _make


@pytest.fixture
def animated_webp_bytes():
    """Factory for lossless animated WEBP files made of noise frames."""

    def _make(width=800, height=400, frames=3):
        images = [
            Image.effect_noise((width, height), 64 + index * 10).convert("RGB")
            for index in range(frames)
        ]
        buffer = io.BytesIO()
        images[0].save(
            buffer,
            "WEBP",
            save_all=True,
            append_images=images[1:],
            duration=100,
            loop=0,
            lossless=True,
        )
        return buffer.getvalue()

    return _make


def write_output(args, payload: bytes) -> None:
    """Write payload to the last argument of an ffmpeg-style argv."""
    with open(args[-1], "wb") as f:
        f.write(payload)


@pytest.fixture
def png_frame():
    """Encoded 1920x1080 PNG used as an extracted video frame."""
    buffer = io.BytesIO()
    Image.new("RGB", (1920, 1080), (10, 120, 200)).save(buffer, "PNG")
    return buffer.getvalue()


@pytest.fixture
def output_writer():
    """Expose write_output to tests as a fixture."""
    return write_output
