import logging
from io import BytesIO

from minio import Minio
from minio.error import S3Error
from lead_magnet_client.exceptions import BlobNotFoundError, MinioError, StorageWriteError
from lead_magnet_client.repositories.storage_repository import StorageRepository, build_storage_key
from lead_magnet_client.utils.async_io import run_io_bound
from lead_magnet_client.config import MinioConfig
import urllib3

logger = logging.getLogger(__name__)
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

class MinioRepository(StorageRepository):
    def __init__(self, settings: MinioConfig):
        http_client = None
        if settings.secure:
            http_client = urllib3.PoolManager(
                cert_reqs='CERT_NONE',
            )
        self._client = Minio(
            endpoint=settings.endpoint,
            access_key=settings.accesskey,
            secret_key=settings.secretkey,
            secure=settings.secure,
            http_client=http_client
        )
        self._bucket = settings.bucket

    @property
    def location(self) -> str:
        return f"minio bucket '{self._bucket}'"

    async def _ensure_bucket(self):
        exists = await run_io_bound(self._client.bucket_exists, self._bucket)
        if not exists:
            await run_io_bound(self._client.make_bucket, self._bucket)

    async def check_connection(self):
        """Checks the MinIO connection and that the bucket exists."""
        logger.debug(f"Checking MinIO connection and bucket '{self._bucket}' existence...")
        try:
            await self._ensure_bucket()
            logger.debug("MinIO connection and bucket presence confirmed.")
        except (S3Error, urllib3.exceptions.HTTPError) as e:
            logger.error(f"MinIO connection failed: {e}")
            raise MinioError(str(e)) from e

    async def write(self, data: bytes, suggested_name: str, content_type: str | None = None) -> str:
        storage_key = build_storage_key(suggested_name)
        try:
            await self._ensure_bucket()
            await run_io_bound(
                self._client.put_object,
                self._bucket,
                storage_key,
                BytesIO(data),
                len(data),
                content_type=content_type or "application/octet-stream",
            )
        except (S3Error, urllib3.exceptions.HTTPError) as e:
            raise StorageWriteError(f"Failed to store file: {e}") from e
        return storage_key

    def _get_bytes(self, storage_key: str) -> bytes:
        resp = self._client.get_object(self._bucket, storage_key)
        try:
            return resp.read()
        finally:
            resp.close()
            resp.release_conn()

    async def read(self, storage_key: str) -> bytes:
        try:
            return await run_io_bound(self._get_bytes, storage_key)
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise BlobNotFoundError(f"Blob '{storage_key}' not found.") from e
            raise MinioError(str(e)) from e

    async def exists(self, storage_key: str) -> bool:
        try:
            await run_io_bound(self._client.stat_object, self._bucket, storage_key)
            return True
        except S3Error as e:
            if e.code == "NoSuchKey":
                return False
            raise MinioError(str(e)) from e

    async def _delete(self, storage_key: str):
        await run_io_bound(self._client.remove_object, self._bucket, storage_key)

