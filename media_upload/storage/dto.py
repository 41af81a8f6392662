# storage/dto.py
from datetime import datetime
from pathlib import Path
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class FormatDescriptor(BaseModel):
    """
    Describes one derived variant (thumbnail, responsive width, converted format)
    of a stored image.
    """

    name: str
    hash: str
    ext: str
    mime: str
    width: Optional[int] = None
    height: Optional[int] = None
    size: int
    url: Optional[str] = None
    provider_metadata: Optional[Dict[str, Any]] = None
    # Local buffer waiting to be uploaded; never persisted.
    path: Optional[Path] = Field(None, exclude=True)


class UploadableFile(BaseModel):
    """
    The canonical file entity produced by the upload pipeline. Storage backends
    address the stored bytes by (folder_path, hash, ext) only.
    """

    id: Optional[str] = None
    name: str
    alternative_text: Optional[str] = None
    caption: Optional[str] = None
    folder: Optional[str] = None
    folder_path: str = "/"
    hash: str
    ext: str
    mime: str
    size: int
    url: Optional[str] = None
    preview_url: Optional[str] = None
    provider: str
    provider_metadata: Optional[Dict[str, Any]] = None
    width: Optional[int] = None
    height: Optional[int] = None
    formats: Dict[str, FormatDescriptor] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Transient pipeline state, excluded from serialization.
    filepath: Optional[Path] = Field(None, exclude=True)
    tmp_working_directory: Optional[Path] = Field(None, exclude=True)

    @property
    def format(self) -> str:
        """Lowercase extension without the dot, e.g. 'jpg'."""
        return self.ext.lstrip(".").lower()

    def variant(self, key: str) -> "UploadableFile":
        """
        Builds a standalone entity for a derived variant so it can be handed to
        a storage backend exactly like a primary file.
        """
        descriptor = self.formats[key]
        return UploadableFile(
            name=descriptor.name,
            folder=self.folder,
            folder_path=self.folder_path,
            hash=descriptor.hash,
            ext=descriptor.ext,
            mime=descriptor.mime,
            size=descriptor.size,
            provider=self.provider,
            provider_metadata=descriptor.provider_metadata,
            width=descriptor.width,
            height=descriptor.height,
            filepath=descriptor.path,
        )
