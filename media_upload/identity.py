# identity.py
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Optional

from .config import Settings, get_settings
from .models import FileInfo, RawFile
from .storage.dto import UploadableFile
from .validation import Validator

# Extensions for MIME types the platform registry may not know about.
MIME_SUBTYPE_EXTENSIONS = {
    "jpeg": ".jpg",
    "png": ".png",
    "gif": ".gif",
    "webp": ".webp",
    "avif": ".avif",
    "svg+xml": ".svg",
    "tiff": ".tiff",
    "mp4": ".mp4",
    "webm": ".webm",
    "pdf": ".pdf",
    "plain": ".txt",
    "json": ".json",
}


def resolve_extension(filename: str, mime: str) -> str:
    """
    Returns the extension (with a leading dot) for an upload: the filename
    suffix when present, otherwise one derived from the MIME type.
    """
    suffix = Path(filename).suffix
    if suffix:
        return suffix

    guessed = mimetypes.guess_extension(mime) if mime else None
    if guessed:
        return guessed

    subtype = mime.split("/")[-1].lower() if mime else ""
    return MIME_SUBTYPE_EXTENSIONS.get(subtype, ".bin")


def generate_hash(basename: str) -> str:
    return f"{basename}_{uuid.uuid4().hex}"


class IdentityAssigner:
    """
    Turns a validated raw upload into a fresh UploadableFile: display name,
    storage hash, extension and folder path.
    """

    def __init__(
        self,
        store,
        provider_name: str,
        settings: Optional[Settings] = None,
        validator: Optional[Validator] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.provider_name = provider_name
        self.settings = settings or get_settings()
        self.validator = validator or Validator(self.settings)
        self.logger = logger or logging.getLogger("media_upload.identity")

    resolve_extension = staticmethod(resolve_extension)
    generate_hash = staticmethod(generate_hash)

    async def resolve_folder_path(self, folder_id: Optional[str]) -> str:
        """
        Looks up the stored path of a folder.

        :param folder_id: The folder id, or None for the root.
        :return: The folder's path, or "/" when it is unknown.
        """
        if not folder_id:
            return "/"
        try:
            folder = await self.store.get_folder(folder_id)
        except Exception as e:
            self.logger.warning(f"Failed to resolve folder path for {folder_id}: {e}")
            return "/"
        if folder is None:
            self.logger.warning(f"Folder {folder_id} not found, storing file at root")
            return "/"
        return folder.path

    async def build_entity(
        self,
        raw: RawFile,
        file_info: Optional[FileInfo] = None,
        folder: Optional[str] = None,
        tmp_working_directory: Optional[Path] = None,
    ) -> UploadableFile:
        file_info = file_info or FileInfo()
        name = self.validator.validate_filename(file_info.name or raw.filename)
        ext = self.resolve_extension(raw.filename, raw.mime_type)
        basename = name[: -len(ext)] if ext and name.endswith(ext) and name != ext else name
        folder_id = file_info.folder or folder

        entity = UploadableFile(
            name=name,
            alternative_text=file_info.alternative_text,
            caption=file_info.caption,
            folder=folder_id,
            folder_path=await self.resolve_folder_path(folder_id),
            hash=self.generate_hash(basename),
            ext=ext,
            mime=raw.mime_type,
            size=raw.size,
            provider=self.provider_name,
            filepath=raw.path,
            tmp_working_directory=tmp_working_directory,
        )
        self.logger.info(f"Assigned hash {entity.hash} to {raw.filename}")
        return entity
