"""Shared pytest fixtures for imageforge tests."""

from __future__ import annotations

import io
import shutil
import tempfile
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from PIL import Image

from imageforge.core.config import ImageforgeConfig
from imageforge.core.generator import GeneratedImage, GenerationError
from imageforge.core.local_tier import LocalTier
from imageforge.core.storage import ArtifactStore


class FakeClock:
    """Monotonic clock for the rate governor, advanced by hand (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """UTC wall clock for the artifact store, advanced by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRemoteTier:
    """In-memory remote tier that can be told to fail."""

    def __init__(self, fail_uploads: bool = False, fail_deletes: bool = False) -> None:
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict] = {}
        self.content_types: dict[str, str] = {}
        self.fail_uploads = fail_uploads
        self.fail_deletes = fail_deletes
        self.deleted: list[str] = []

    def upload(self, filename: str, data: bytes, content_type: str, metadata: dict) -> str:
        if self.fail_uploads:
            raise TimeoutError("upload timed out")
        self.objects[filename] = data
        self.content_types[filename] = content_type
        self.metadata[filename] = metadata
        return f"https://storage.googleapis.com/test-bucket/{filename}"

    def delete(self, filename: str) -> None:
        if self.fail_deletes:
            raise ConnectionError("remote unavailable")
        self.objects.pop(filename, None)
        self.deleted.append(filename)


class FakeGenerator:
    """Image generator returning a fixed PNG, or failing on demand."""

    def __init__(self, image_bytes: bytes, fail: bool = False) -> None:
        self.image_bytes = image_bytes
        self.fail = fail
        self.calls: list[tuple] = []

    def generate(self, prompt: str) -> GeneratedImage:
        self.calls.append(("generate", prompt))
        if self.fail:
            raise GenerationError("model unavailable")
        return GeneratedImage(data=self.image_bytes, description=f"An image of {prompt}")

    def edit(self, prompt: str, image: bytes, mime_type: str) -> GeneratedImage:
        self.calls.append(("edit", prompt, image, mime_type))
        if self.fail:
            raise GenerationError("model unavailable")
        return GeneratedImage(data=self.image_bytes, description="Edited")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ImageforgeConfig:
    """Create a test configuration with temporary directories and no remote tier.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        ImageforgeConfig instance for testing
    """
    return ImageforgeConfig(
        _env_file=None,
        environment="development",
        rate_limit=5,
        rate_limit_window_ms=60_000,
        remote_enabled=False,
        data_dir=str(temp_dir / "data"),
        images_dir=str(temp_dir / "data" / "images"),
        metadata_dir=str(temp_dir / "data" / "metadata"),
        retention_count=3,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def remote_tier() -> FakeRemoteTier:
    return FakeRemoteTier()


@pytest.fixture
def store(temp_dir: Path, remote_tier: FakeRemoteTier, wall_clock: FakeWallClock) -> ArtifactStore:
    """Artifact store over temporary directories with an in-memory remote tier."""
    return ArtifactStore(
        temp_dir / "metadata",
        LocalTier(temp_dir / "images"),
        remote_tier,
        clock=wall_clock,
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A small valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A small valid JPEG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(30, 30, 200)).save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def test_client(monkeypatch, test_config: ImageforgeConfig, png_bytes: bytes):
    """FastAPI TestClient wired to temporary storage and a fake generator.

    The lifespan handler builds the governor and store from ``test_config``;
    the fake generator is installed after startup.
    """
    from fastapi.testclient import TestClient

    import imageforge.api.main as api_main

    monkeypatch.setattr(api_main, "config", test_config)

    with TestClient(api_main.app) as client:
        api_main.app.state.generator = FakeGenerator(png_bytes)
        yield client
