"""
API tests for the media endpoints.

The application is exercised through FastAPI's TestClient with the
pipeline dependency swapped for one rooted in a temporary directory.
"""

from pathlib import Path

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from mediaboard.api.deps import get_pipeline, get_settings
from mediaboard.core.config import MediaConfig, Settings, settings
from mediaboard.main import app
from mediaboard.media.errors import ToolchainUnavailable
from mediaboard.media.file_types import MediaClass
from mediaboard.media.pipeline import UploadOrchestrator


class TestMediaRoutes:
    """Test upload, replace, delete and stats endpoints."""

    @pytest.fixture(autouse=True)
    def setup_app(self, layout, runner, registry, media_config):
        """Route every request to a pipeline backed by the test layout."""
        self.layout = layout
        self.runner = runner
        self.registry = registry
        self.pipeline = UploadOrchestrator(layout=layout, runner=runner, registry=registry, config=media_config)
        app.dependency_overrides[get_pipeline] = lambda: self.pipeline
        self.client = TestClient(app)
        yield
        app.dependency_overrides.clear()

    def upload(self, path="/api/upload", post_id="1", filename="photo.png", content=b"", data=None):
        form = {"postId": post_id} if post_id is not None else {}
        form.update(data or {})
        return self.client.post(path, data=form, files={"file": (filename, content, "application/octet-stream")})

    def test_upload_image(self, image_bytes):
        response = self.upload(content=image_bytes(1920, 1080))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["postId"] == 1
        assert body["previewScale"] == 67
        assert body["aspectRatio"] == 1.777778
        assert body["deletedPreview"] is False
        assert body["assignedExt"] == "webp"
        assert body["finalExt"] == "png"
        assert body["transType"] is None
        assert body["originalPath"].endswith("/uploads/image/1.png")
        assert len(body["thumbnails"]) == 3
        assert "X-Request-ID" in response.headers

    def test_missing_post_id(self, image_bytes):
        response = self.upload(post_id=None, content=image_bytes())

        assert response.status_code == 400

    def test_non_numeric_post_id(self, image_bytes):
        response = self.upload(post_id="abc", content=image_bytes())

        assert response.status_code == 400
        assert not any(self.layout.uploads_dir(MediaClass.IMAGE).iterdir())

    def test_leading_zeros_are_normalised(self, image_bytes):
        response = self.upload(post_id="0042", content=image_bytes())

        assert response.status_code == 200
        assert response.json()["postId"] == 42
        assert response.json()["originalPath"].endswith("/uploads/image/42.png")
        assert self.layout.original_path("42", MediaClass.IMAGE, "png").exists()
        assert not self.layout.original_path("0042", MediaClass.IMAGE, "png").exists()

        deleted = self.client.post("/api/delete/posts", json={"postId": 42})

        assert deleted.json()["filesRemoved"] == 5

    def test_missing_file(self):
        response = self.client.post("/api/upload", data={"postId": "1"})

        assert response.status_code == 400

    def test_unsupported_type(self):
        response = self.upload(filename="notes.txt", content=b"hello")

        assert response.status_code == 400

    def test_oversize_file(self, image_bytes, tmp_path):
        small_limits = Settings()
        small_limits.media = MediaConfig(DATA_ROOT=str(tmp_path / "data"), MAX_FILE_SIZE_MB=0)
        app.dependency_overrides[get_settings] = lambda: small_limits

        response = self.upload(content=image_bytes())

        assert response.status_code == 413

    def test_toolchain_failure_is_500(self):
        self.registry.select_encoder = AsyncMock(side_effect=ToolchainUnavailable("ffmpeg not found"))

        response = self.upload(filename="clip.mp4", content=b"V" * 100)

        assert response.status_code == 500

    def test_replace(self, image_bytes):
        self.upload(post_id="4", content=image_bytes())

        response = self.upload(path="/api/replace", post_id="4", filename="photo.jpg", content=image_bytes(fmt="JPEG"))

        assert response.status_code == 200
        assert response.json()["finalExt"] == "jpg"
        assert not self.layout.original_path("4", MediaClass.IMAGE, "png").exists()

    def test_replace_thumbnail(self, image_bytes):
        self.upload(post_id="5", content=image_bytes())

        response = self.upload(path="/api/replace/thumbnail", post_id="5", content=image_bytes(200, 200))

        assert response.status_code == 200
        assert response.json()["complete"] is True
        assert self.layout.original_path("5", MediaClass.IMAGE, "png").exists()

    def test_delete_single_post(self, image_bytes):
        self.upload(post_id="6", content=image_bytes())

        response = self.client.post("/api/delete/posts", json={"postId": 6})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["deleted"] == 1
        assert body["filesRemoved"] == 5

    def test_delete_many_posts(self, image_bytes):
        self.upload(post_id="7", content=image_bytes())
        self.upload(post_id="8", content=image_bytes())

        response = self.client.post("/api/delete/posts", json={"postIds": [7, 8, 9]})

        assert response.status_code == 200
        assert response.json()["deleted"] == 3
        assert response.json()["filesRemoved"] == 10

    def test_delete_without_ids(self):
        response = self.client.post("/api/delete/posts", json={})

        assert response.status_code == 400

    def test_stats(self):
        self.layout.original_path("1", MediaClass.IMAGE, "png").write_bytes(b"x" * (3 * 1024 * 1024))

        response = self.client.get("/api/stats")

        assert response.status_code == 200
        assert response.json() == {"totalMB": 3.0}

    def test_health(self):
        response = self.client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["storage"] == "healthy"
        self.runner.introspect.assert_not_called()

    def test_metrics_endpoint(self):
        response = self.client.get("/metrics")

        assert response.status_code == 200
        assert b"mediaboard" in response.content

    def test_request_metrics_use_route_templates(self):
        """Test that stored media URLs do not create one series per content id."""
        media_prefix = f"/{Path(settings.media.data_root).name}"
        for content_id in ("9181", "9182"):
            self.client.get(f"{media_prefix}/thumbnails/{content_id}_small.webp")
        self.client.get("/api/health")

        content = self.client.get("/metrics").content

        assert b"9181_small" not in content
        assert b"9182_small" not in content
        assert b'endpoint="/api/health"' in content
