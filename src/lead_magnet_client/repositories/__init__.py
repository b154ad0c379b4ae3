from .storage_repository import StorageRepository, LocalStorageRepository
from .minio_repository import MinioRepository
from .pg_repositoryFile import FileRepository
from .pg_repositoryPage import PageRepository
from .pg_repositoryLead import LeadRepository
from .pg_repositoryAnalytics import AnalyticsRepository
from .pg_repositoryUser import UserRepository

__all__ = [
    "StorageRepository",
    "LocalStorageRepository",
    "MinioRepository",
    "FileRepository",
    "PageRepository",
    "LeadRepository",
    "AnalyticsRepository",
    "UserRepository",
]
