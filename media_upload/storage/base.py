# storage/base.py
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..exceptions import StorageError, ValidationError
from .dto import UploadableFile


class StorageBackend(ABC):
    """
    Abstract base class for a storage backend.
    Defines the common interface that all specific backends
    (e.g., local disk, S3, Cloudinary) must implement. Backends address
    stored bytes by (folder_path, hash, ext) only.
    """

    name: str = ""

    def __init__(self, max_file_size: int, logger: Optional[logging.Logger] = None):
        self.max_file_size = max_file_size
        self.logger = logger or logging.getLogger(f"media_upload.storage.{self.name or 'backend'}")

    @abstractmethod
    async def upload(self, file: UploadableFile) -> None:
        """
        Stores the bytes at file.filepath and fills in file.url and
        file.provider_metadata.

        :param file: The entity to upload; its filepath must point to a local file.
        """
        pass

    @abstractmethod
    async def delete(self, file: UploadableFile) -> None:
        """
        Removes the stored object of a file.

        :param file: The entity whose stored object should be removed.
        """
        pass

    async def check_file_size(self, file: UploadableFile) -> None:
        """
        Rejects files larger than the configured maximum before any I/O is done.
        """
        if file.size > self.max_file_size:
            raise ValidationError(
                f"File size {file.size} exceeds maximum allowed size {self.max_file_size}"
            )

    async def get_signed_url(self, file: UploadableFile, expires_in: Optional[int] = None) -> str:
        """
        Returns a time-limited URL for a private object.

        :param file: The stored entity.
        :param expires_in: Lifetime of the URL in seconds.
        """
        raise StorageError(f"Signed URLs are not supported by the {self.name} storage provider")

    @staticmethod
    def object_key(file: UploadableFile) -> str:
        """Builds the backend-relative key 'folder/path/hash.ext' without a leading slash."""
        folder_path = (file.folder_path or "").strip("/")
        filename = f"{file.hash}{file.ext}"
        return f"{folder_path}/{filename}" if folder_path else filename
