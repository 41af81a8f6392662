# tests/conftest.py
import pytest
from unittest.mock import MagicMock
from pathlib import Path
from PIL import Image

from media_upload.config import Settings, get_settings
from media_upload.metadata_store import InMemoryMetadataStore
from media_upload.models import RawFile


@pytest.fixture
def settings(tmp_path):
    """
    Provides real application settings built from explicit values.
    The .env file is ignored so the developer's local configuration never leaks in.
    """
    tmp_dir = tmp_path / "tmp"
    tmp_dir.mkdir()
    return Settings(
        _env_file=None,
        LOG_LEVEL="DEBUG",
        LOG_DIR=tmp_path / "logs",
        METADATA_BACKEND="memory",
        DATABASE_URL="sqlite://",
        TMP_DIR=tmp_dir,
        STORAGE_PROVIDER="local",
        LOCAL_STORAGE_PATH=tmp_path / "uploads",
        LOCAL_PUBLIC_URL_PREFIX="/files",
        IMAGE_QUALITY=80,
        GENERATE_THUMBNAILS=True,
        THUMBNAIL_SIZE=150,
        RESPONSIVE_BREAKPOINTS=[480, 768, 1024, 1920],
    )


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """
    get_settings is lru_cached; clear it around every test so one test's
    configuration can never be observed by another.
    """
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_logger():
    return MagicMock()


@pytest.fixture
def memory_store():
    return InMemoryMetadataStore()


@pytest.fixture
def make_image(tmp_path):
    """
    Factory writing a test image to disk.
    Noise images are large and compress well when re-encoded at a lower quality.
    """
    source_dir = tmp_path / "incoming"
    source_dir.mkdir(exist_ok=True)

    def _make(name="photo.jpg", size=(640, 480), fmt="JPEG", mode="RGB", noise=False, **save_kwargs) -> Path:
        if noise:
            img = Image.effect_noise(size, 64).convert(mode)
        else:
            img = Image.linear_gradient("L").resize(size).convert(mode)
        path = source_dir / name
        img.save(path, format=fmt, **save_kwargs)
        return path

    return _make


@pytest.fixture
def make_raw(make_image):
    """Factory returning a RawFile describing a freshly written test image."""

    def _make(name="photo.jpg", mime_type=None, **kwargs) -> RawFile:
        path = make_image(name, **kwargs)
        return RawFile.from_path(path, mime_type=mime_type)

    return _make


@pytest.fixture
def text_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello media upload")
    return path
