"""
Upload ingestion: validation, admission, duplicate resolution, blob write and
record persistence, with compensating cleanup on every failure path.

State flow::

    RECEIVED -> ADMITTED -> DUPLICATE_CHECKED -> PERSISTED -> RELEASED
                                             \\-> RELEASED            (duplicate)
    RECEIVED -> REJECTED                                            (in flight)
    ADMITTED / DUPLICATE_CHECKED -> FAILED                           (error)
"""
import enum
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Awaitable, Callable, Optional

from lead_magnet_client.config import IngestionConfig
from lead_magnet_client.db.files import FileORM
from lead_magnet_client.exceptions import (
    DataClientError,
    DisallowedFileTypeError,
    FileTooLargeError,
    NoFileProvidedError,
    ProcessingInProgressError,
    UnknownIngestionError,
)
from lead_magnet_client.ingestion.registry import InFlightRegistry
from lead_magnet_client.ingestion.signature import make_signature
from lead_magnet_client.models.file import FileInDB
from lead_magnet_client.repositories.pg_repositoryFile import FileRepository
from lead_magnet_client.repositories.storage_repository import StorageRepository

logger = logging.getLogger(__name__)


class IngestionState(str, enum.Enum):
    RECEIVED = "received"
    ADMITTED = "admitted"
    DUPLICATE_CHECKED = "duplicate_checked"
    PERSISTED = "persisted"
    RELEASED = "released"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class UploadRequest:
    owner_id: int
    original_name: Optional[str]
    content: Optional[bytes]
    display_name: Optional[str] = None
    description: Optional[str] = None
    mime_type: Optional[str] = None


@dataclass
class IngestionResult:
    file: FileInDB
    duplicate: bool
    history: list[IngestionState] = field(default_factory=list)

    @property
    def state(self) -> IngestionState:
        return self.history[-1]


def file_extension(name: str) -> str:
    return PurePath(name).suffix.lower().lstrip(".")


class IngestionOrchestrator:
    def __init__(
        self,
        files: FileRepository,
        storage: StorageRepository,
        registry: InFlightRegistry,
        settings: IngestionConfig,
        slug_factory: Callable[[], Awaitable[str]],
    ):
        self._files = files
        self._storage = storage
        self._registry = registry
        self._settings = settings
        self._new_slug = slug_factory

    @property
    def registry(self) -> InFlightRegistry:
        return self._registry

    def validate(self, request: UploadRequest):
        """Rejects bad input before anything is written or admitted."""
        if request.content is None or not request.original_name:
            raise NoFileProvidedError("No file uploaded")
        ext = file_extension(request.original_name)
        allowed = {t.lower().lstrip(".") for t in self._settings.allowed_types}
        if ext not in allowed:
            raise DisallowedFileTypeError(f"File type .{ext} not allowed")
        if len(request.content) > self._settings.max_size_bytes:
            raise FileTooLargeError("File size too large")

    async def ingest(self, request: UploadRequest) -> IngestionResult:
        self.validate(request)
        history = [IngestionState.RECEIVED]
        name = request.original_name
        size = len(request.content)
        fingerprint = make_signature(request.owner_id, name, size)

        admission = self._registry.try_admit(fingerprint, request.owner_id, name)
        if not admission:
            logger.info(f"Upload '{name}' by user {request.owner_id} rejected: {admission.reason}")
            raise ProcessingInProgressError("File is being processed, please retry later")
        history.append(IngestionState.ADMITTED)
        logger.info(f"File upload by user {request.owner_id}: {name} ({size} bytes)")

        storage_key: Optional[str] = None
        try:
            existing = await self._files.find_existing(request.owner_id, name, size)
            history.append(IngestionState.DUPLICATE_CHECKED)
            if existing is not None:
                logger.info(f"Duplicate upload of '{name}' by user {request.owner_id}, reusing file {existing.id}")
                record, duplicate = existing, True
            else:
                mime_type = request.mime_type or mimetypes.guess_type(name)[0] or "application/octet-stream"
                storage_key = await self._storage.write(request.content, name, mime_type)
                record, inserted = await self._files.create_if_absent(FileORM(
                    owner_id=request.owner_id,
                    name=request.display_name or name,
                    original_name=name,
                    description=request.description or None,
                    storage_key=storage_key,
                    mime_type=mime_type,
                    size_bytes=size,
                    download_slug=await self._new_slug(),
                ))
                if inserted:
                    history.append(IngestionState.PERSISTED)
                    duplicate = False
                else:
                    await self._storage.remove(storage_key)
                    duplicate = True
        except BaseException as exc:
            history.append(IngestionState.FAILED)
            removed = await self._storage.remove(storage_key) if storage_key else None
            logger.error(
                f"Upload of '{name}' by user {request.owner_id} failed: {exc!r}; "
                f"blob removed={removed}, registry entry released",
            )
            if isinstance(exc, DataClientError) or not isinstance(exc, Exception):
                raise
            raise UnknownIngestionError("Upload failed") from exc
        finally:
            self._registry.release(fingerprint)

        history.append(IngestionState.RELEASED)
        return IngestionResult(file=record, duplicate=duplicate, history=history)
