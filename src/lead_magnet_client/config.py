from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional

DEFAULT_ALLOWED_TYPES = ["pdf", "doc", "docx", "txt", "jpg", "jpeg", "png", "gif", "zip"]


class PostgresConfig(BaseModel):
    user: str = "postgres"
    password: str = "postgres"
    host: str = "localhost"
    port: int = 5432
    db: str = "lead_magnet"
    # Full SQLAlchemy async URL; wins over the fields above when set.
    dsn: Optional[str] = None

    pool_size: int = 5
    max_overflow: int = 5
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    application_name: str = "lead_magnet_client"

    def get_pg_dsn(self) -> str:
        """Builds the SQLAlchemy DSN from the fields of this object."""
        if self.dsn:
            return self.dsn
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"

    def is_postgres(self) -> bool:
        return self.get_pg_dsn().startswith("postgresql")


class StorageConfig(BaseModel):
    backend: Literal["local", "minio"] = "local"
    local_root: str = "./uploads"


class MinioConfig(BaseModel):
    endpoint: str = "localhost:9000"
    accesskey: str = "minioadmin"
    secretkey: str = "minioadmin"
    bucket: str = "lead-magnet"
    secure: bool = False


class IngestionConfig(BaseModel):
    allowed_types: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_TYPES))
    max_size_bytes: int = 50 * 1024 * 1024
    stale_after_seconds: float = 5.0
    ttl_seconds: float = 10.0
    inline_content_max_bytes: int = 64 * 1024
    base_url: str = ""
    page_template: str = "xiyi-download"


class AuthConfig(BaseModel):
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24


class DataClientConfig(BaseModel):
    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    minio: MinioConfig = Field(default_factory=MinioConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra='ignore'
    )

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    minio: MinioConfig = Field(default_factory=MinioConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)

    def data_client_config(self) -> DataClientConfig:
        return DataClientConfig(
            postgres=self.postgres,
            storage=self.storage,
            minio=self.minio,
            ingestion=self.ingestion,
        )


_cached_settings: Optional[Settings] = None

def get_settings() -> Settings:
    """
    Returns the cached settings instance, creating it on first call.
    """
    global _cached_settings
    if _cached_settings is None:
        _cached_settings = Settings()
    return _cached_settings


def reset_settings() -> None:
    global _cached_settings
    _cached_settings = None
