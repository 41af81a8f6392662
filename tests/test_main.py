# tests/test_main.py
import json
import logging
import pytest
from unittest.mock import patch

from media_upload.cloudinary_cdn import CloudinaryStorageBackend
from media_upload.config import Settings
from media_upload.exceptions import ConfigurationError
from media_upload.localfs import LocalStorageBackend
from media_upload.main import (
    build_upload_service,
    initialize_metadata_store,
    initialize_storage_backend,
    main,
    setup_logging,
)
from media_upload.metadata_store import InMemoryMetadataStore
from media_upload.s3 import S3StorageBackend
from media_upload.sql_store import SqlMetadataStore
from media_upload.upload import UploadService


@pytest.fixture
def restore_root_logger():
    """Removes the handlers setup_logging installs so log files are closed after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_initialize_storage_backend_local(settings):
    backend = initialize_storage_backend(settings)

    assert isinstance(backend, LocalStorageBackend)
    assert backend.root == settings.LOCAL_STORAGE_PATH.resolve()
    assert backend.max_file_size == settings.MAX_FILE_SIZE


@patch("media_upload.s3.boto3.client")
def test_initialize_storage_backend_s3(mock_client, settings):
    settings = settings.model_copy(
        update={
            "STORAGE_PROVIDER": "aws-s3",
            "AWS_S3_BUCKET": "media",
            "AWS_S3_REGION": "eu-west-1",
            "AWS_ACCESS_KEY_ID": "key",
            "AWS_SECRET_ACCESS_KEY": "secret",
        }
    )

    backend = initialize_storage_backend(settings)

    assert isinstance(backend, S3StorageBackend)
    assert backend.bucket == "media"
    mock_client.assert_called_once_with(
        "s3",
        region_name="eu-west-1",
        aws_access_key_id="key",
        aws_secret_access_key="secret",
        endpoint_url=None,
    )


@patch("media_upload.cloudinary_cdn.cloudinary.config")
def test_initialize_storage_backend_cloudinary(mock_config, settings):
    settings = settings.model_copy(
        update={
            "STORAGE_PROVIDER": "cloudinary",
            "CLOUDINARY_CLOUD_NAME": "demo",
            "CLOUDINARY_API_KEY": "key",
            "CLOUDINARY_API_SECRET": "secret",
        }
    )

    assert isinstance(initialize_storage_backend(settings), CloudinaryStorageBackend)


@patch("media_upload.main.logging")
def test_initialize_storage_backend_missing_credentials(mock_logging, settings):
    settings = settings.model_copy(update={"STORAGE_PROVIDER": "cloudinary", "CLOUDINARY_CLOUD_NAME": "demo"})

    with pytest.raises(ConfigurationError, match="CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET"):
        initialize_storage_backend(settings)
    mock_logging.critical.assert_called_once()


def test_initialize_metadata_store(settings):
    assert isinstance(initialize_metadata_store(settings), InMemoryMetadataStore)

    sql_settings = settings.model_copy(update={"METADATA_BACKEND": "sql", "DATABASE_URL": "sqlite://"})
    assert isinstance(initialize_metadata_store(sql_settings), SqlMetadataStore)


def test_build_upload_service(settings):
    service = build_upload_service(settings)

    assert isinstance(service, UploadService)
    assert service.storage.name == "local"
    assert service.identity.provider_name == "local"


def test_setup_logging_creates_log_files(settings, restore_root_logger):
    setup_logging(settings)
    logging.getLogger("media_upload.test").error("boom")

    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "boom" in settings.LOG_FILE.read_text()
    assert "boom" in settings.ERROR_LOG_FILE.read_text()
    assert logging.getLogger("botocore").level == logging.WARNING


def test_setup_logging_falls_back_to_console(settings, restore_root_logger):
    with patch("media_upload.main.logging.FileHandler", side_effect=PermissionError("denied")):
        setup_logging(settings)

    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0], logging.StreamHandler)


@pytest.fixture
def cli_settings(settings):
    with patch("media_upload.main.get_settings", return_value=settings):
        yield settings


def test_main_upload_list_and_show(cli_settings, text_file, capsys, restore_root_logger):
    assert main(["upload", str(text_file), "--caption", "hello"]) == 0
    uploaded = json.loads(capsys.readouterr().out)

    assert uploaded[0]["caption"] == "hello"
    assert "filepath" not in uploaded[0]

    # The in-memory store does not outlive a single command.
    assert main(["list"]) == 0
    assert json.loads(capsys.readouterr().out)["total"] == 0


def test_main_reports_operation_errors(cli_settings, restore_root_logger):
    assert main(["show", "missing"]) == 1


def test_main_exits_with_2_on_configuration_error(settings, restore_root_logger):
    broken = settings.model_copy(
        update={"STORAGE_PROVIDER": "aws-s3", "AWS_S3_BUCKET": None, "AWS_ACCESS_KEY_ID": None}
    )
    with patch("media_upload.main.get_settings", return_value=broken):
        assert main(["folders"]) == 2


def test_main_folder_commands_against_sql_store(settings, tmp_path, capsys, restore_root_logger):
    sql_settings = settings.model_copy(
        update={"METADATA_BACKEND": "sql", "DATABASE_URL": f"sqlite:///{tmp_path / 'cli.db'}"}
    )
    with patch("media_upload.main.get_settings", return_value=sql_settings):
        assert main(["mkdir", "albums"]) == 0
        folder = json.loads(capsys.readouterr().out)
        assert main(["folders"]) == 0
        folders = json.loads(capsys.readouterr().out)
        assert main(["rmdir", folder["id"]]) == 0

    assert folder["path"] == "/albums"
    assert [f["id"] for f in folders] == [folder["id"]]
