import pytest
import pytest_asyncio
from pathlib import Path
from sqlalchemy.ext.asyncio import create_async_engine

from lead_magnet_client.db.base import Base
from lead_magnet_client import DataClient, create_data_client
from lead_magnet_client.config import DataClientConfig, PostgresConfig, StorageConfig, IngestionConfig


@pytest.fixture
def config(tmp_path) -> DataClientConfig:
    """
    A throwaway SQLite database and storage root per test.
    The same models run on PostgreSQL in production.
    """
    return DataClientConfig(
        postgres=PostgresConfig(dsn=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
        storage=StorageConfig(backend="local", local_root=str(tmp_path / "uploads")),
        ingestion=IngestionConfig(base_url="http://testserver"),
    )


@pytest.fixture
def storage_root(config) -> Path:
    return Path(config.storage.local_root)


@pytest.fixture
def blobs(storage_root):
    """Callable listing the blobs currently stored."""
    def _list() -> list[str]:
        if not storage_root.exists():
            return []
        return sorted(p.name for p in storage_root.iterdir() if p.is_file())
    return _list


@pytest_asyncio.fixture(scope="function")
async def db_engine(config):
    """Creates all tables before the test and disposes the engine afterwards."""
    engine = create_async_engine(config.postgres.get_pg_dsn())
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def data_client(db_engine, config) -> DataClient:
    """
    DataClient built through the same factory the application uses.
    """
    client = create_data_client(config)
    await client.storage.check_connection()
    yield client
    client.registry.clear()
    await client.aclose()


@pytest_asyncio.fixture
async def owner(data_client):
    return await data_client.create_user("owner@example.com", "Owner")


@pytest_asyncio.fixture
async def other_owner(data_client):
    return await data_client.create_user("other@example.com", "Other")
