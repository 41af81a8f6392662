# localfs.py
import asyncio
import logging
import re
import shutil
from pathlib import Path
from typing import Optional

from .exceptions import ConflictError, StorageError
from .storage.base import StorageBackend
from .storage.dto import UploadableFile


class LocalStorageBackend(StorageBackend):
    """
    Stores files on the local filesystem under a root directory, implementing
    the StorageBackend interface.
    """

    name = "local"

    def __init__(
        self,
        root: Path,
        public_url_prefix: str = "/files",
        max_file_size: int = 10 * 1024 * 1024,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(max_file_size, logger)
        self.root = Path(root).resolve()
        self.public_url_prefix = public_url_prefix

    def _destination(self, file: UploadableFile) -> Path:
        destination = (self.root / self.object_key(file)).resolve()
        if not destination.is_relative_to(self.root):
            raise StorageError(f"Refusing to write outside the storage root: {destination}")
        return destination

    def _public_url(self, file: UploadableFile) -> str:
        url = f"{self.public_url_prefix}/{file.folder_path or ''}/{file.hash}{file.ext}"
        return re.sub(r"/+", "/", url)

    async def upload(self, file: UploadableFile) -> None:
        """Copies the local file into place, creating parent directories as needed."""
        if not file.filepath:
            raise StorageError(f"File path is required to upload {file.name}")
        destination = self._destination(file)
        if destination.exists():
            raise ConflictError(f"Refusing to overwrite existing object {destination}")

        def copy():
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file.filepath, destination)

        try:
            self.logger.info(f"Uploading {file.filepath} to {destination}...")
            await asyncio.to_thread(copy)
        except OSError as e:
            self.logger.error(f"Failed to upload file to '{destination}': {e}")
            raise StorageError(f"Failed to store {file.name} locally: {e}") from e

        file.url = self._public_url(file)
        file.provider_metadata = {"path": str(destination)}

    async def delete(self, file: UploadableFile) -> None:
        destination = self._destination(file)
        try:
            self.logger.info(f"Deleting {destination}...")
            await asyncio.to_thread(destination.unlink)
        except FileNotFoundError:
            self.logger.warning(f"Could not delete {destination} as it was not found.")
        except OSError as e:
            self.logger.error(f"Failed to delete '{destination}': {e}")
            raise StorageError(f"Failed to delete {file.name} from local storage: {e}") from e
