# cloudinary_cdn.py
import asyncio
import logging
from typing import Optional

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from .exceptions import ConflictError, StorageError
from .storage.base import StorageBackend
from .storage.dto import UploadableFile


def resource_type_for(mime: str) -> str:
    """Maps a MIME type onto the Cloudinary resource type used to address it."""
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/") or mime.startswith("audio/"):
        return "video"
    return "raw"


class CloudinaryStorageBackend(StorageBackend):
    """
    Client for the Cloudinary managed media API, implementing the StorageBackend
    interface. Objects are addressed by public id 'folder/path/hash'.
    """

    name = "cloudinary"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        max_file_size: int = 10 * 1024 * 1024,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(max_file_size, logger)
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )
        self.logger.info(f"Cloudinary client configured for cloud '{cloud_name}'.")

    @staticmethod
    def public_id(file: UploadableFile) -> str:
        folder_path = (file.folder_path or "").strip("/")
        return f"{folder_path}/{file.hash}" if folder_path else file.hash

    async def upload(self, file: UploadableFile) -> None:
        if not file.filepath:
            raise StorageError(f"File path is required to upload {file.name}")
        public_id = self.public_id(file)

        try:
            self.logger.info(f"Uploading {file.filepath} to Cloudinary as '{public_id}'...")
            response = await asyncio.to_thread(
                cloudinary.uploader.upload,
                str(file.filepath),
                public_id=public_id,
                resource_type="auto",
                overwrite=False,
            )
        except CloudinaryError as e:
            self.logger.error(f"Failed to upload '{public_id}' to Cloudinary: {e}")
            raise StorageError(f"Failed to upload {file.name} to Cloudinary: {e}") from e

        if response.get("existing"):
            raise ConflictError(f"Cloudinary object '{public_id}' already exists")

        file.url = response.get("secure_url")
        file.provider_metadata = {
            "public_id": response.get("public_id", public_id),
            "resource_type": response.get("resource_type"),
            "format": response.get("format"),
            "version": response.get("version"),
        }

    async def delete(self, file: UploadableFile) -> None:
        metadata = file.provider_metadata or {}
        public_id = metadata.get("public_id") or self.public_id(file)
        resource_type = metadata.get("resource_type") or resource_type_for(file.mime)

        try:
            self.logger.info(f"Deleting Cloudinary object '{public_id}' ({resource_type})...")
            response = await asyncio.to_thread(
                cloudinary.uploader.destroy, public_id, resource_type=resource_type
            )
        except CloudinaryError as e:
            self.logger.error(f"Failed to delete Cloudinary object '{public_id}': {e}")
            raise StorageError(f"Failed to delete {file.name} from Cloudinary: {e}") from e

        result = response.get("result")
        if result == "not found":
            self.logger.warning(f"Could not delete Cloudinary object '{public_id}' as it was not found.")
        elif result != "ok":
            raise StorageError(f"Cloudinary refused to delete '{public_id}': {result}")
