# sql_store.py
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Integer, String, Text, create_engine, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import ConflictError, NotFoundError
from .metadata_store import MetadataStore, folder_path_for, normalize_filters, parse_sort
from .models import FileInfo, FileListResult, Folder, PaginationOptions
from .storage.dto import FormatDescriptor, UploadableFile


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class FolderRecord(Base):
    __tablename__ = "folders"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    parent: Mapped[Optional[str]] = mapped_column(ForeignKey("folders.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def to_model(self) -> Folder:
        return Folder(
            id=self.id,
            name=self.name,
            path=self.path,
            parent=self.parent,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class FileRecord(Base):
    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    alternative_text: Mapped[Optional[str]] = mapped_column(Text)
    caption: Mapped[Optional[str]] = mapped_column(Text)
    folder: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    folder_path: Mapped[str] = mapped_column(Text, default="/")
    hash: Mapped[str] = mapped_column(String(400), nullable=False, unique=True)
    ext: Mapped[str] = mapped_column(String(32), nullable=False)
    mime: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    url: Mapped[Optional[str]] = mapped_column(Text)
    preview_url: Mapped[Optional[str]] = mapped_column(Text)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    width: Mapped[Optional[int]] = mapped_column(Integer)
    height: Mapped[Optional[int]] = mapped_column(Integer)
    formats: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def to_model(self) -> UploadableFile:
        return UploadableFile(
            id=self.id,
            name=self.name,
            alternative_text=self.alternative_text,
            caption=self.caption,
            folder=self.folder,
            folder_path=self.folder_path,
            hash=self.hash,
            ext=self.ext,
            mime=self.mime,
            size=self.size,
            url=self.url,
            preview_url=self.preview_url,
            provider=self.provider,
            provider_metadata=self.provider_metadata,
            width=self.width,
            height=self.height,
            formats={
                key: FormatDescriptor.model_validate(value)
                for key, value in (self.formats or {}).items()
            },
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class SqlMetadataStore(MetadataStore):
    """
    Persists file and folder records through SQLAlchemy. Sessions are
    synchronous and run in a worker thread.
    """

    def __init__(self, database_url: str, logger: Optional[logging.Logger] = None, echo: bool = False):
        self.logger = logger or logging.getLogger("media_upload.metadata")
        engine_options: Dict[str, Any] = {"echo": echo}
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite":
            engine_options["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                engine_options["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_options)
        self.session_factory = sessionmaker(self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        self.logger.info(f"Metadata store connected to {url.render_as_string(hide_password=True)}")

    async def _run(self, fn, *args):
        def work():
            with self.session_factory() as session:
                return fn(session, *args)

        return await asyncio.to_thread(work)

    async def save_file(self, file: UploadableFile) -> UploadableFile:
        def save(session: Session) -> UploadableFile:
            data = file.model_dump(exclude={"id", "created_at", "updated_at"})
            record = FileRecord(**data)
            session.add(record)
            session.commit()
            return record.to_model()

        try:
            saved = await self._run(save)
        except Exception as e:
            self.logger.error(f"Failed to save file record for {file.name}: {e}")
            raise
        self.logger.info(f"Saved file record {saved.id} ({saved.name})")
        return saved

    async def get_file(self, file_id: str) -> Optional[UploadableFile]:
        def get(session: Session) -> Optional[UploadableFile]:
            record = session.get(FileRecord, file_id)
            return record.to_model() if record else None

        return await self._run(get)

    @staticmethod
    def _where(filters: Dict[str, Any]) -> list:
        clauses = []
        if "name" in filters:
            clauses.append(func.lower(FileRecord.name).contains(str(filters["name"]).lower(), autoescape=True))
        if "mime" in filters:
            clauses.append(FileRecord.mime.contains(str(filters["mime"]), autoescape=True))
        if "folder" in filters:
            clauses.append(FileRecord.folder == filters["folder"])
        if "provider" in filters:
            clauses.append(FileRecord.provider == filters["provider"])
        if "min_size" in filters:
            clauses.append(FileRecord.size >= int(filters["min_size"]))
        if "max_size" in filters:
            clauses.append(FileRecord.size <= int(filters["max_size"]))
        return clauses

    async def list_files(self, options: PaginationOptions) -> FileListResult:
        clauses = self._where(normalize_filters(options.filters))
        field, descending = parse_sort(options.sort)
        column = getattr(FileRecord, field)
        order = column.desc() if descending else column.asc()

        def query(session: Session) -> FileListResult:
            total = session.scalar(select(func.count()).select_from(FileRecord).where(*clauses))
            records = session.scalars(
                select(FileRecord)
                .where(*clauses)
                .order_by(order)
                .offset((options.page - 1) * options.limit)
                .limit(options.limit)
            ).all()
            return FileListResult(
                files=[record.to_model() for record in records],
                total=total or 0,
                page=options.page,
                limit=options.limit,
            )

        return await self._run(query)

    async def update_file(self, file_id: str, info: FileInfo) -> Optional[UploadableFile]:
        def update(session: Session) -> Optional[UploadableFile]:
            record = session.get(FileRecord, file_id)
            if record is None:
                return None
            for key, value in info.model_dump(exclude_none=True).items():
                setattr(record, key, value)
            record.updated_at = _utcnow()
            session.commit()
            return record.to_model()

        return await self._run(update)

    async def delete_file(self, file_id: str) -> bool:
        def delete(session: Session) -> bool:
            record = session.get(FileRecord, file_id)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True

        return await self._run(delete)

    async def get_folder(self, folder_id: str) -> Optional[Folder]:
        def get(session: Session) -> Optional[Folder]:
            record = session.get(FolderRecord, folder_id)
            return record.to_model() if record else None

        return await self._run(get)

    async def create_folder(self, name: str, parent: Optional[str] = None) -> Folder:
        def create(session: Session) -> Folder:
            parent_folder = None
            if parent:
                parent_record = session.get(FolderRecord, parent)
                if parent_record is None:
                    raise NotFoundError(f"Parent folder {parent} not found")
                parent_folder = parent_record.to_model()
            record = FolderRecord(name=name, path=folder_path_for(name, parent_folder), parent=parent)
            session.add(record)
            session.commit()
            return record.to_model()

        folder = await self._run(create)
        self.logger.info(f"Created folder {folder.path} ({folder.id})")
        return folder

    async def list_folders(self) -> List[Folder]:
        def query(session: Session) -> List[Folder]:
            records = session.scalars(select(FolderRecord).order_by(FolderRecord.path.asc())).all()
            return [record.to_model() for record in records]

        return await self._run(query)

    async def delete_folder(self, folder_id: str) -> bool:
        def delete(session: Session) -> bool:
            record = session.get(FolderRecord, folder_id)
            if record is None:
                return False
            files = session.scalar(
                select(func.count()).select_from(FileRecord).where(FileRecord.folder == folder_id)
            )
            if files:
                raise ConflictError("Cannot delete folder that contains files")
            subfolders = session.scalar(
                select(func.count()).select_from(FolderRecord).where(FolderRecord.parent == folder_id)
            )
            if subfolders:
                raise ConflictError("Cannot delete folder that contains subfolders")
            session.delete(record)
            session.commit()
            return True

        return await self._run(delete)

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)
