# tests/test_localfs.py
import pytest
from unittest.mock import patch

from media_upload.exceptions import ConflictError, StorageError, ValidationError
from media_upload.localfs import LocalStorageBackend
from media_upload.storage.dto import UploadableFile


@pytest.fixture
def backend(tmp_path, mock_logger):
    return LocalStorageBackend(tmp_path / "uploads", "/files", max_file_size=1024, logger=mock_logger)


@pytest.fixture
def entity(text_file):
    return UploadableFile(
        name="notes.txt",
        folder_path="/docs/2024",
        hash="notes_0123",
        ext=".txt",
        mime="text/plain",
        size=text_file.stat().st_size,
        provider="local",
        filepath=text_file,
    )


@pytest.mark.asyncio
async def test_upload_copies_file_and_sets_url(backend, entity, tmp_path):
    await backend.upload(entity)

    destination = tmp_path / "uploads" / "docs" / "2024" / "notes_0123.txt"
    assert destination.read_text() == "hello media upload"
    assert entity.url == "/files/docs/2024/notes_0123.txt"
    assert entity.provider_metadata == {"path": str(destination.resolve())}


@pytest.mark.asyncio
async def test_upload_at_root_collapses_slashes(backend, entity, tmp_path):
    entity.folder_path = "/"

    await backend.upload(entity)

    assert entity.url == "/files/notes_0123.txt"
    assert (tmp_path / "uploads" / "notes_0123.txt").exists()


@pytest.mark.asyncio
async def test_upload_refuses_to_overwrite(backend, entity):
    await backend.upload(entity)

    with pytest.raises(ConflictError):
        await backend.upload(entity)


@pytest.mark.asyncio
async def test_upload_refuses_paths_outside_root(backend, entity):
    entity.folder_path = "/../../escape"

    with pytest.raises(StorageError, match="outside the storage root"):
        await backend.upload(entity)


@pytest.mark.asyncio
async def test_upload_wraps_os_errors(backend, entity, mock_logger):
    with patch("media_upload.localfs.shutil.copyfile", side_effect=PermissionError("denied")):
        with pytest.raises(StorageError, match="denied"):
            await backend.upload(entity)
    mock_logger.error.assert_called_once()


@pytest.mark.asyncio
async def test_check_file_size(backend, entity):
    await backend.check_file_size(entity)

    entity.size = 2048
    with pytest.raises(ValidationError):
        await backend.check_file_size(entity)


@pytest.mark.asyncio
async def test_delete_removes_file(backend, entity):
    await backend.upload(entity)
    stored = backend.root / "docs" / "2024" / "notes_0123.txt"

    await backend.delete(entity)

    assert not stored.exists()


@pytest.mark.asyncio
async def test_delete_missing_file_only_warns(backend, entity, mock_logger):
    await backend.delete(entity)

    mock_logger.warning.assert_called_once()


@pytest.mark.asyncio
async def test_signed_urls_are_not_supported(backend, entity):
    with pytest.raises(StorageError, match="not supported"):
        await backend.get_signed_url(entity)
