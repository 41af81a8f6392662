# metadata_store.py
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ConflictError, NotFoundError
from .models import FileInfo, FileListResult, Folder, PaginationOptions
from .storage.dto import UploadableFile

SORT_FIELDS = {
    "name": "name",
    "size": "size",
    "mime": "mime",
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
}
SORT_DIRECTIONS = ("asc", "desc")
DEFAULT_SORT = ("created_at", True)

FILTER_ALIASES = {"minSize": "min_size", "maxSize": "max_size"}


def parse_sort(sort: Optional[str]) -> Tuple[str, bool]:
    """
    Parses a 'field:direction' sort expression.

    :param sort: e.g. 'name:asc' or 'createdAt:desc'.
    :return: (attribute name, descending). Anything unrecognized falls back to newest first.
    """
    if not sort:
        return DEFAULT_SORT
    field, _, direction = sort.partition(":")
    if field not in SORT_FIELDS or direction not in SORT_DIRECTIONS:
        return DEFAULT_SORT
    return SORT_FIELDS[field], direction == "desc"


def normalize_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Renames camelCase filter keys and drops empty values."""
    normalized = {}
    for key, value in (filters or {}).items():
        if value is None or value == "":
            continue
        normalized[FILTER_ALIASES.get(key, key)] = value
    return normalized


def folder_path_for(name: str, parent: Optional[Folder]) -> str:
    return f"{parent.path}/{name}" if parent else f"/{name}"


class MetadataStore(ABC):
    """
    Abstract base class for the persistence of file and folder records.
    """

    @abstractmethod
    async def save_file(self, file: UploadableFile) -> UploadableFile:
        """
        Persists a new file record.

        :param file: The fully processed entity.
        :return: A copy with id, created_at and updated_at assigned.
        """
        pass

    @abstractmethod
    async def get_file(self, file_id: str) -> Optional[UploadableFile]:
        pass

    @abstractmethod
    async def list_files(self, options: PaginationOptions) -> FileListResult:
        """
        Returns one page of file records.

        :param options: Page, limit, 'field:direction' sort and filters.
        """
        pass

    @abstractmethod
    async def update_file(self, file_id: str, info: FileInfo) -> Optional[UploadableFile]:
        """
        Applies the non-empty fields of info to a stored record.

        :return: The updated record, or None when it does not exist.
        """
        pass

    @abstractmethod
    async def delete_file(self, file_id: str) -> bool:
        pass

    @abstractmethod
    async def get_folder(self, folder_id: str) -> Optional[Folder]:
        pass

    @abstractmethod
    async def create_folder(self, name: str, parent: Optional[str] = None) -> Folder:
        """
        Creates a folder whose path is fixed from its parent's path.
        Raises NotFoundError when the parent does not exist.
        """
        pass

    @abstractmethod
    async def list_folders(self) -> List[Folder]:
        pass

    @abstractmethod
    async def delete_folder(self, folder_id: str) -> bool:
        """
        Deletes an empty folder. Returns False when it does not exist and
        raises ConflictError when it still holds files or subfolders.
        """
        pass

    async def close(self) -> None:
        pass


class InMemoryMetadataStore(MetadataStore):
    """Keeps records in process memory; used for tests and throwaway runs."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("media_upload.metadata")
        self._files: Dict[str, UploadableFile] = {}
        self._folders: Dict[str, Folder] = {}
        self._lock = asyncio.Lock()

    async def save_file(self, file: UploadableFile) -> UploadableFile:
        now = datetime.now(timezone.utc)
        record = file.model_copy(
            deep=True,
            update={
                "id": uuid.uuid4().hex,
                "created_at": now,
                "updated_at": now,
                "filepath": None,
                "tmp_working_directory": None,
            },
        )
        async with self._lock:
            self._files[record.id] = record
        self.logger.info(f"Saved file record {record.id} ({record.name})")
        return record.model_copy(deep=True)

    async def get_file(self, file_id: str) -> Optional[UploadableFile]:
        record = self._files.get(file_id)
        return record.model_copy(deep=True) if record else None

    @staticmethod
    def _matches(file: UploadableFile, filters: Dict[str, Any]) -> bool:
        if "name" in filters and str(filters["name"]).lower() not in file.name.lower():
            return False
        if "mime" in filters and str(filters["mime"]) not in file.mime:
            return False
        if "folder" in filters and file.folder != filters["folder"]:
            return False
        if "provider" in filters and file.provider != filters["provider"]:
            return False
        if "min_size" in filters and file.size < int(filters["min_size"]):
            return False
        if "max_size" in filters and file.size > int(filters["max_size"]):
            return False
        return True

    async def list_files(self, options: PaginationOptions) -> FileListResult:
        filters = normalize_filters(options.filters)
        field, descending = parse_sort(options.sort)

        matching = [f for f in self._files.values() if self._matches(f, filters)]
        matching.sort(key=lambda f: getattr(f, field), reverse=descending)

        start = (options.page - 1) * options.limit
        page = matching[start:start + options.limit]
        return FileListResult(
            files=[f.model_copy(deep=True) for f in page],
            total=len(matching),
            page=options.page,
            limit=options.limit,
        )

    async def update_file(self, file_id: str, info: FileInfo) -> Optional[UploadableFile]:
        async with self._lock:
            record = self._files.get(file_id)
            if record is None:
                return None
            updates = info.model_dump(exclude_none=True)
            updates["updated_at"] = datetime.now(timezone.utc)
            record = record.model_copy(update=updates)
            self._files[file_id] = record
        return record.model_copy(deep=True)

    async def delete_file(self, file_id: str) -> bool:
        async with self._lock:
            return self._files.pop(file_id, None) is not None

    async def get_folder(self, folder_id: str) -> Optional[Folder]:
        folder = self._folders.get(folder_id)
        return folder.model_copy() if folder else None

    async def create_folder(self, name: str, parent: Optional[str] = None) -> Folder:
        async with self._lock:
            parent_folder = None
            if parent:
                parent_folder = self._folders.get(parent)
                if parent_folder is None:
                    raise NotFoundError(f"Parent folder {parent} not found")
            now = datetime.now(timezone.utc)
            folder = Folder(
                id=uuid.uuid4().hex,
                name=name,
                path=folder_path_for(name, parent_folder),
                parent=parent,
                created_at=now,
                updated_at=now,
            )
            self._folders[folder.id] = folder
        self.logger.info(f"Created folder {folder.path} ({folder.id})")
        return folder.model_copy()

    async def list_folders(self) -> List[Folder]:
        return [f.model_copy() for f in sorted(self._folders.values(), key=lambda f: f.path)]

    async def delete_folder(self, folder_id: str) -> bool:
        async with self._lock:
            if folder_id not in self._folders:
                return False
            if any(f.folder == folder_id for f in self._files.values()):
                raise ConflictError("Cannot delete folder that contains files")
            if any(f.parent == folder_id for f in self._folders.values()):
                raise ConflictError("Cannot delete folder that contains subfolders")
            del self._folders[folder_id]
        return True
