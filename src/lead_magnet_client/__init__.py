from typing import Optional
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from .client import DataClient
from .config import (get_settings, DataClientConfig, PostgresConfig, StorageConfig,
                     MinioConfig, IngestionConfig)
from .ingestion import InFlightRegistry
from .repositories.storage_repository import StorageRepository, LocalStorageRepository
from .repositories.minio_repository import MinioRepository
from .repositories.pg_repositoryFile import FileRepository
from .repositories.pg_repositoryPage import PageRepository
from .repositories.pg_repositoryLead import LeadRepository
from .repositories.pg_repositoryAnalytics import AnalyticsRepository
from .repositories.pg_repositoryUser import UserRepository

from .exceptions import *


def create_storage(config: DataClientConfig) -> StorageRepository:
    if config.storage.backend == "minio":
        return MinioRepository(config.minio)
    return LocalStorageRepository(config.storage)


def create_data_client(config: Optional[DataClientConfig] = None) -> DataClient:
    """
    Factory that wires the repositories, the storage backend and the in-flight
    registry into a DataClient.

    :param config: Full client configuration. Read from the environment when omitted.
    :return: Configured DataClient instance.
    """
    if config is None:
        config = get_settings().data_client_config()

    engine_kwargs = {}
    if config.postgres.is_postgres():
        engine_kwargs = dict(
            pool_size=config.postgres.pool_size,
            max_overflow=config.postgres.max_overflow,
            pool_timeout=config.postgres.pool_timeout,
            pool_recycle=config.postgres.pool_recycle,
            pool_pre_ping=config.postgres.pool_pre_ping,
            connect_args={
                "server_settings": {
                    "application_name": config.postgres.application_name
                }
            },
        )
    engine = create_async_engine(config.postgres.get_pg_dsn(), **engine_kwargs)

    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)

    registry = InFlightRegistry(
        stale_after=config.ingestion.stale_after_seconds,
        ttl=config.ingestion.ttl_seconds,
    )

    return DataClient(
        engine=engine,
        file_repo=FileRepository(session_factory),
        storage=create_storage(config),
        page_repo=PageRepository(session_factory),
        lead_repo=LeadRepository(session_factory),
        analytics_repo=AnalyticsRepository(session_factory),
        user_repo=UserRepository(session_factory),
        registry=registry,
        ingestion=config.ingestion,
    )


__all__ = [
    "DataClient", "create_data_client", "create_storage",
    "DataClientConfig", "PostgresConfig", "StorageConfig", "MinioConfig", "IngestionConfig",
    "DataClientError", "DatabaseError", "ValidationError", "ConflictError",
    "ProcessingInProgressError", "NotFoundError", "StorageError", "MinioError",
]
