# models.py
import mimetypes
from datetime import datetime
from pathlib import Path
from pydantic import BaseModel, Field, PositiveInt
from typing import Any, Dict, List, Literal, Optional

from .storage.dto import UploadableFile

ConvertibleFormat = Literal["jpeg", "png", "webp", "avif"]
FitStrategy = Literal["cover", "contain", "fill", "inside", "outside"]


class RawFile(BaseModel):
    """An incoming file as received from the client, already spooled to disk."""

    filename: str
    mime_type: str
    size: int
    path: Path

    @classmethod
    def from_path(cls, path, mime_type: Optional[str] = None, filename: Optional[str] = None) -> "RawFile":
        """Describes a local file, guessing its MIME type from the name when not given."""
        path = Path(path)
        filename = filename or path.name
        if mime_type is None:
            mime_type, _ = mimetypes.guess_type(filename)
        return cls(
            filename=filename,
            mime_type=mime_type or "application/octet-stream",
            size=path.stat().st_size,
            path=path,
        )


class FileInfo(BaseModel):
    """Caller-supplied metadata overrides for an upload or an update."""

    name: Optional[str] = None
    alternative_text: Optional[str] = None
    caption: Optional[str] = None
    folder: Optional[str] = None


class ProcessingOptions(BaseModel):
    """
    Per-request image processing options. Fields left as None fall back to the
    corresponding Settings value.
    """

    quality: Optional[int] = Field(None, ge=1, le=100)  # IMAGE_QUALITY
    progressive: Optional[bool] = None  # IMAGE_PROGRESSIVE
    thumbnail: Optional[bool] = None  # GENERATE_THUMBNAILS
    responsive: bool = True
    breakpoints: Optional[List[PositiveInt]] = None  # RESPONSIVE_BREAKPOINTS
    formats: List[ConvertibleFormat] = Field(default_factory=list)


class ValidationOptions(BaseModel):
    """
    Per-request validation limits. None means "use the configured default";
    extension and dimension checks are skipped when no limit is configured.
    """

    max_file_size: Optional[int] = None  # MAX_FILE_SIZE
    allowed_types: Optional[List[str]] = None  # ALLOWED_TYPES
    allowed_extensions: Optional[List[str]] = None
    max_width: Optional[int] = None  # MAX_IMAGE_WIDTH
    max_height: Optional[int] = None  # MAX_IMAGE_HEIGHT


class PaginationOptions(BaseModel):
    page: int = 1
    limit: int = 20
    sort: Optional[str] = None
    filters: Dict[str, Any] = Field(default_factory=dict)


class FileListResult(BaseModel):
    files: List[UploadableFile]
    total: int
    page: int
    limit: int


class BulkDeleteResult(BaseModel):
    successful: int
    failed: int
    total: int


class Folder(BaseModel):
    id: str
    name: str
    path: str
    parent: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ImageMetadata(BaseModel):
    width: int
    height: int
    format: Optional[str] = None
    mode: Optional[str] = None
    has_alpha: bool = False
