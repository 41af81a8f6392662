# main.py
import argparse
import asyncio
import json
import logging
from typing import List, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .cloudinary_cdn import CloudinaryStorageBackend
from .config import Settings, get_settings
from .exceptions import ConfigurationError, MediaUploadError, ValidationError
from .localfs import LocalStorageBackend
from .metadata_store import InMemoryMetadataStore, MetadataStore
from .models import FileInfo, PaginationOptions, ProcessingOptions, RawFile
from .s3 import S3StorageBackend
from .sql_store import SqlMetadataStore
from .storage.base import StorageBackend
from .upload import UploadService


def setup_logging(settings: Optional[Settings] = None):
    """Configures logging to files and console explicitly."""
    settings = settings or get_settings()
    log_level_name = settings.LOG_LEVEL.upper()

    # Get the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_name)

    # Clear any existing handlers to prevent duplicate logs on re-runs or implicit configs
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    try:
        settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.LOG_FILE)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        error_handler = logging.FileHandler(settings.ERROR_LOG_FILE)
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        root_logger.addHandler(error_handler)
    except OSError as e:
        # Log to console if file logging fails (e.g., permissions)
        root_logger.error(f"Failed to set up file logging in {settings.LOG_DIR}: {e}")

    # Reducing "noise" from third-party libraries
    for name in ("botocore", "boto3", "s3transfer", "urllib3", "PIL", "cloudinary"):
        logging.getLogger(name).setLevel(logging.WARNING)


def initialize_storage_backend(settings: Settings) -> StorageBackend:
    """
    Initializes and returns the storage backend selected by STORAGE_PROVIDER.
    Raises ConfigurationError when the provider's credentials are incomplete.
    """
    missing = settings.missing_provider_settings()
    if missing:
        logging.critical(
            f"Storage provider '{settings.STORAGE_PROVIDER}' is missing settings: {', '.join(missing)}"
        )
        raise ConfigurationError(
            f"Missing configuration for {settings.STORAGE_PROVIDER}: {', '.join(missing)}"
        )

    if settings.STORAGE_PROVIDER == "local":
        logging.info("Using local storage provider.")
        return LocalStorageBackend(
            root=settings.LOCAL_STORAGE_PATH,
            public_url_prefix=settings.LOCAL_PUBLIC_URL_PREFIX,
            max_file_size=settings.MAX_FILE_SIZE,
        )

    if settings.STORAGE_PROVIDER == "aws-s3":
        logging.info("Using AWS S3 storage provider.")
        return S3StorageBackend(
            bucket=settings.AWS_S3_BUCKET,
            region=settings.AWS_S3_REGION,
            access_key_id=settings.AWS_ACCESS_KEY_ID,
            secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            endpoint_url=settings.AWS_S3_ENDPOINT,
            max_file_size=settings.MAX_FILE_SIZE,
            multipart_threshold=settings.S3_MULTIPART_THRESHOLD,
            multipart_chunksize=settings.S3_MULTIPART_CHUNKSIZE,
            signed_url_expiry=settings.S3_SIGNED_URL_EXPIRY,
        )

    if settings.STORAGE_PROVIDER == "cloudinary":
        logging.info("Using Cloudinary storage provider.")
        return CloudinaryStorageBackend(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            max_file_size=settings.MAX_FILE_SIZE,
        )

    logging.critical(f"Unknown STORAGE_PROVIDER: {settings.STORAGE_PROVIDER}")
    raise ConfigurationError(f"Unknown storage provider: {settings.STORAGE_PROVIDER}")


def initialize_metadata_store(settings: Settings) -> MetadataStore:
    if settings.METADATA_BACKEND == "memory":
        logging.info("Using in-memory metadata store.")
        return InMemoryMetadataStore()
    return SqlMetadataStore(settings.DATABASE_URL)


def build_upload_service(settings: Optional[Settings] = None) -> UploadService:
    settings = settings or get_settings()
    storage = initialize_storage_backend(settings)
    store = initialize_metadata_store(settings)
    return UploadService(storage, store, settings=settings)


def _parse_filters(values: Optional[List[str]]) -> dict:
    filters = {}
    for value in values or []:
        key, sep, item = value.partition("=")
        if not sep:
            raise ValidationError(f"Filter must look like key=value, got '{value}'")
        filters[key] = item
    return filters


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="media-upload",
        description="Upload, list and manage media files on the configured storage provider.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    upload = commands.add_parser("upload", help="Upload one or more local files.")
    upload.add_argument("paths", nargs="+", help="Files to upload.")
    upload.add_argument("--name", help="Display name override.")
    upload.add_argument("--alt", dest="alternative_text", help="Alternative text.")
    upload.add_argument("--caption", help="Caption.")
    upload.add_argument("--folder", help="Target folder id.")
    upload.add_argument("--quality", type=int, help="Encoder quality (1-100).")
    upload.add_argument("--progressive", action="store_true", default=None, help="Progressive JPEG output.")
    upload.add_argument("--no-thumbnail", dest="thumbnail", action="store_false", default=None)
    upload.add_argument("--no-responsive", dest="responsive", action="store_false", default=True)
    upload.add_argument("--breakpoints", type=lambda s: [int(b) for b in s.split(",") if b], help="e.g. 480,1024")
    upload.add_argument(
        "--convert", dest="formats", action="append", default=[],
        choices=["jpeg", "png", "webp", "avif"], help="Also store a copy in this format.",
    )

    listing = commands.add_parser("list", help="List stored files.")
    listing.add_argument("--page", type=int, default=1)
    listing.add_argument("--limit", type=int, default=20)
    listing.add_argument("--sort", help="field:direction, e.g. size:asc")
    listing.add_argument("--filter", dest="filters", action="append", help="key=value")

    show = commands.add_parser("show", help="Show one stored file.")
    show.add_argument("id")

    update = commands.add_parser("update", help="Update file metadata.")
    update.add_argument("id")
    update.add_argument("--name")
    update.add_argument("--alt", dest="alternative_text")
    update.add_argument("--caption")
    update.add_argument("--folder")

    delete = commands.add_parser("delete", help="Delete one file, or several in bulk.")
    delete.add_argument("ids", nargs="+")

    signed = commands.add_parser("signed-url", help="Print a time-limited URL for a file.")
    signed.add_argument("id")
    signed.add_argument("--expires-in", type=int)

    commands.add_parser("folders", help="List folders.")

    mkdir = commands.add_parser("mkdir", help="Create a folder.")
    mkdir.add_argument("name")
    mkdir.add_argument("--parent", help="Parent folder id.")

    rmdir = commands.add_parser("rmdir", help="Delete an empty folder.")
    rmdir.add_argument("id")

    return parser


def _to_json(result):
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_to_json(item) for item in result]
    return result


async def run_command(service: UploadService, args: argparse.Namespace):
    """Dispatches a parsed CLI command to the upload service."""
    if args.command == "upload":
        files = [RawFile.from_path(path) for path in args.paths]
        info = FileInfo(
            name=args.name,
            alternative_text=args.alternative_text,
            caption=args.caption,
        )
        options = ProcessingOptions(
            quality=args.quality,
            progressive=args.progressive,
            thumbnail=args.thumbnail,
            responsive=args.responsive,
            breakpoints=args.breakpoints,
            formats=args.formats,
        )
        return await service.upload_files(files, info, folder=args.folder, processing_options=options)
    if args.command == "list":
        options = PaginationOptions(
            page=args.page, limit=args.limit, sort=args.sort, filters=_parse_filters(args.filters)
        )
        return await service.get_files(options)
    if args.command == "show":
        return await service.get_file(args.id)
    if args.command == "update":
        info = FileInfo(
            name=args.name,
            alternative_text=args.alternative_text,
            caption=args.caption,
            folder=args.folder,
        )
        return await service.update_file(args.id, info)
    if args.command == "delete":
        if len(args.ids) == 1:
            return {"deleted": await service.delete_file(args.ids[0])}
        return await service.bulk_delete(args.ids)
    if args.command == "signed-url":
        return {"url": await service.get_signed_url(args.id, args.expires_in)}
    if args.command == "folders":
        return await service.get_folders()
    if args.command == "mkdir":
        return await service.create_folder(args.name, args.parent)
    if args.command == "rmdir":
        return {"deleted": await service.delete_folder(args.id)}
    raise ValueError(f"Unknown command: {args.command}")


async def _run(service: UploadService, args: argparse.Namespace):
    try:
        return await run_command(service, args)
    finally:
        await service.store.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except PydanticValidationError as e:
        logging.basicConfig()
        logging.critical(f"Invalid configuration: {e}")
        return 2
    setup_logging(settings)

    try:
        service = build_upload_service(settings)
    except ConfigurationError as e:
        logging.critical(f"Could not start media-upload: {e}")
        return 2

    try:
        result = asyncio.run(_run(service, args))
    except MediaUploadError as e:
        logging.error(f"{args.command} failed: {e}")
        return 1
    except Exception as e:
        logging.critical(f"An unexpected error occurred during '{args.command}': {e}", exc_info=True)
        return 1

    print(json.dumps(_to_json(result), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
