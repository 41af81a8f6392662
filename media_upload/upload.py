# upload.py
import asyncio
import logging
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence

from .config import Settings, get_settings
from .exceptions import NotFoundError, StorageError, ValidationError
from .identity import IdentityAssigner
from .images import ImageProcessor
from .metadata_store import MetadataStore
from .models import (
    BulkDeleteResult,
    FileInfo,
    FileListResult,
    Folder,
    PaginationOptions,
    ProcessingOptions,
    RawFile,
    ValidationOptions,
)
from .storage.base import StorageBackend
from .storage.dto import UploadableFile
from .validation import Validator


class UploadService:
    """
    Sequences the upload pipeline (validate, name, derive, store, persist) and
    the read/update/delete operations over stored files and folders.
    """

    def __init__(
        self,
        storage: StorageBackend,
        store: MetadataStore,
        settings: Optional[Settings] = None,
        validator: Optional[Validator] = None,
        identity: Optional[IdentityAssigner] = None,
        images: Optional[ImageProcessor] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage
        self.store = store
        self.validator = validator or Validator(self.settings)
        self.identity = identity or IdentityAssigner(
            store, storage.name, settings=self.settings, validator=self.validator
        )
        self.images = images or ImageProcessor(self.settings)
        self.logger = logger or logging.getLogger("media_upload.upload")

    @asynccontextmanager
    async def tmp_working_directory(self) -> AsyncIterator[Path]:
        """Creates a per-batch scratch directory that is removed on every exit path."""
        tmp_dir = Path(
            await asyncio.to_thread(
                tempfile.mkdtemp,
                prefix="media-upload-",
                dir=str(self.settings.TMP_DIR) if self.settings.TMP_DIR else None,
            )
        )
        try:
            yield tmp_dir
        finally:
            try:
                await asyncio.to_thread(shutil.rmtree, tmp_dir)
            except OSError as e:
                self.logger.warning(f"Failed to clean up tmp directory {tmp_dir}: {e}")

    async def upload_files(
        self,
        files: Sequence[RawFile],
        file_info: Optional[FileInfo] = None,
        folder: Optional[str] = None,
        processing_options: Optional[ProcessingOptions] = None,
        validation_options: Optional[ValidationOptions] = None,
    ) -> List[UploadableFile]:
        """
        Runs every file through the pipeline, one after another. The first failure
        aborts the batch; files persisted before it stay persisted.

        :return: The saved entities, in input order.
        """
        self.validator.validate_batch(files)
        if file_info:
            self.validator.validate_file_info(file_info)

        uploaded = []
        async with self.tmp_working_directory() as tmp_dir:
            try:
                for raw in files:
                    saved = await self._upload_one(
                        raw, file_info, folder, processing_options, validation_options, tmp_dir
                    )
                    uploaded.append(saved)
            except Exception as e:
                self.logger.error(
                    f"Upload failed for batch {[f.filename for f in files]}: {e}"
                )
                raise
        return uploaded

    async def upload_file(
        self,
        file: RawFile,
        file_info: Optional[FileInfo] = None,
        folder: Optional[str] = None,
        processing_options: Optional[ProcessingOptions] = None,
        validation_options: Optional[ValidationOptions] = None,
    ) -> UploadableFile:
        uploaded = await self.upload_files(
            [file], file_info, folder, processing_options, validation_options
        )
        return uploaded[0]

    async def _upload_one(
        self,
        raw: RawFile,
        file_info: Optional[FileInfo],
        folder: Optional[str],
        processing_options: Optional[ProcessingOptions],
        validation_options: Optional[ValidationOptions],
        tmp_dir: Path,
    ) -> UploadableFile:
        # 1. Validate
        await self.validator.validate_file(raw, validation_options)

        # 2. Build entity
        entity = await self.identity.build_entity(raw, file_info, folder, tmp_dir)

        if entity.mime.startswith("image/"):
            try:
                metadata = await self.images.get_metadata(entity)
                entity.width = metadata.width
                entity.height = metadata.height
            except Exception as e:
                self.logger.warning(f"Failed to extract image metadata for {raw.filename}: {e}")

            # 3. Derive
            processed = await self.images.process_image(entity, processing_options)
            entity.formats = processed.formats
            if processed.size is not None:
                entity.size = processed.size
                entity.filepath = processed.filepath

        # 4. Upload primary and variants
        await self.storage.check_file_size(entity)
        await self.storage.upload(entity)
        for key in entity.formats:
            variant = entity.variant(key)
            await self.storage.upload(variant)
            entity.formats[key].url = variant.url
            entity.formats[key].provider_metadata = variant.provider_metadata

        # 5. Persist
        saved = await self.store.save_file(entity)
        self.logger.info(
            f"File uploaded successfully: {saved.name} ({saved.size} bytes, provider {saved.provider})"
        )
        return saved

    async def get_files(self, options: Optional[PaginationOptions] = None) -> FileListResult:
        options = options or PaginationOptions()
        self.validator.validate_pagination_options(options)
        return await self.store.list_files(options)

    async def get_file(self, file_id: str) -> UploadableFile:
        file = await self.store.get_file(file_id)
        if file is None:
            raise NotFoundError(f"File {file_id} not found")
        return file

    async def update_file(self, file_id: str, info: FileInfo) -> UploadableFile:
        self.validator.validate_file_info(info)
        await self.get_file(file_id)
        updated = await self.store.update_file(file_id, info)
        if updated is None:
            raise NotFoundError(f"File {file_id} not found")
        self.logger.info(f"File {file_id} updated: {info.model_dump(exclude_none=True)}")
        return updated

    async def delete_file(self, file_id: str) -> bool:
        """
        Removes the stored primary object, then each variant, then the record.
        Variant removal failures are logged and do not stop the deletion.
        """
        file = await self.get_file(file_id)
        try:
            await self.storage.delete(file)
            for key in file.formats:
                try:
                    await self.storage.delete(file.variant(key))
                except StorageError as e:
                    self.logger.warning(f"Failed to delete variant {key} of file {file_id}: {e}")
            await self.store.delete_file(file_id)
        except Exception as e:
            self.logger.error(f"Failed to delete file {file_id}: {e}")
            raise
        self.logger.info(f"File deleted successfully: {file_id} ({file.name})")
        return True

    async def bulk_delete(self, file_ids: List[str]) -> BulkDeleteResult:
        if not isinstance(file_ids, (list, tuple)) or not file_ids:
            raise ValidationError("File IDs array is required")

        results = await asyncio.gather(
            *(self.delete_file(file_id) for file_id in file_ids), return_exceptions=True
        )
        failed = sum(1 for result in results if isinstance(result, BaseException))
        self.logger.info(f"Bulk delete finished: {len(results) - failed} deleted, {failed} failed")
        return BulkDeleteResult(
            successful=len(results) - failed,
            failed=failed,
            total=len(file_ids),
        )

    async def get_signed_url(self, file_id: str, expires_in: Optional[int] = None) -> str:
        file = await self.get_file(file_id)
        return await self.storage.get_signed_url(file, expires_in)

    async def create_folder(self, name: str, parent: Optional[str] = None) -> Folder:
        self.validator.validate_folder_name(name)
        folder = await self.store.create_folder(name, parent)
        self.logger.info(f"Folder created successfully: {folder.path} ({folder.id})")
        return folder

    async def get_folders(self) -> List[Folder]:
        return await self.store.list_folders()

    async def get_folder(self, folder_id: str) -> Folder:
        folder = await self.store.get_folder(folder_id)
        if folder is None:
            raise NotFoundError(f"Folder {folder_id} not found")
        return folder

    async def delete_folder(self, folder_id: str) -> bool:
        deleted = await self.store.delete_folder(folder_id)
        if not deleted:
            raise NotFoundError(f"Folder {folder_id} not found")
        self.logger.info(f"Folder deleted successfully: {folder_id}")
        return True
