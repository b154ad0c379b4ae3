import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from uuid import uuid4

from lead_magnet_client.config import StorageConfig
from lead_magnet_client.exceptions import BlobNotFoundError, StorageError, StorageWriteError
from lead_magnet_client.utils.async_io import run_io_bound

logger = logging.getLogger(__name__)


def build_storage_key(suggested_name: str) -> str:
    """
    Random prefix keeps keys unique even when two owners upload the same name.
    Only the basename survives so a key never escapes the storage root.
    """
    base = Path(suggested_name.replace("\\", "/")).name or "file"
    return f"{uuid4()}-{base}"


class StorageRepository(ABC):
    """Blob storage keyed by a generated storage key."""

    @abstractmethod
    async def check_connection(self): ...

    @abstractmethod
    async def write(self, data: bytes, suggested_name: str, content_type: str | None = None) -> str: ...

    @abstractmethod
    async def read(self, storage_key: str) -> bytes: ...

    @abstractmethod
    async def exists(self, storage_key: str) -> bool: ...

    @abstractmethod
    async def _delete(self, storage_key: str): ...

    async def remove(self, storage_key: str | None) -> bool:
        """Best-effort delete. Returns False instead of raising."""
        if not storage_key:
            return False
        try:
            await self._delete(storage_key)
            return True
        except Exception as e:
            logger.warning(f"Could not remove blob '{storage_key}': {e}")
            return False

    @property
    @abstractmethod
    def location(self) -> str: ...


class LocalStorageRepository(StorageRepository):
    def __init__(self, settings: StorageConfig):
        self._root = Path(settings.local_root)

    @property
    def location(self) -> str:
        return str(self._root.resolve())

    def _path(self, storage_key: str) -> Path:
        return self._root / Path(storage_key).name

    async def check_connection(self):
        logger.debug(f"Checking local storage root '{self._root}'...")
        try:
            await run_io_bound(self._root.mkdir, parents=True, exist_ok=True)
            if not os.access(self._root, os.W_OK):
                raise StorageError(f"Storage root '{self._root}' is not writable.")
        except OSError as e:
            logger.error(f"Local storage check failed: {e}")
            raise StorageError(str(e)) from e

    async def write(self, data: bytes, suggested_name: str, content_type: str | None = None) -> str:
        storage_key = build_storage_key(suggested_name)
        path = self._path(storage_key)

        def _write():
            self._root.mkdir(parents=True, exist_ok=True)
            with open(path, "xb") as fh:
                fh.write(data)

        try:
            await run_io_bound(_write)
        except OSError as e:
            logger.error(f"Failed to write blob '{storage_key}': {e}")
            # a partial file must not survive the failed write
            await self.remove(storage_key)
            raise StorageWriteError(f"Failed to store file: {e}") from e
        logger.debug(f"Stored {len(data)} bytes as '{storage_key}'")
        return storage_key

    async def read(self, storage_key: str) -> bytes:
        try:
            return await run_io_bound(self._path(storage_key).read_bytes)
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob '{storage_key}' not found.") from e
        except OSError as e:
            raise StorageError(str(e)) from e

    async def exists(self, storage_key: str) -> bool:
        return await run_io_bound(self._path(storage_key).is_file)

    async def _delete(self, storage_key: str):
        await run_io_bound(self._path(storage_key).unlink, missing_ok=True)
