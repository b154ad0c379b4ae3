from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FileUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None


class FileInDB(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    name: str
    original_name: str
    description: Optional[str] = None
    storage_key: Optional[str] = None
    mime_type: str
    size_bytes: int
    download_slug: str
    downloads: int = 0
    is_active: bool = True
    is_public: bool = False
    is_created: bool = False
    content: Optional[str] = None
    created: Optional[datetime] = None
    edited: Optional[datetime] = None


class FileLinks(BaseModel):
    """Public summary returned to the uploader."""
    id: int
    name: str
    download_slug: str = Field(serialization_alias="downloadSlug")
    download_url: str = Field(serialization_alias="downloadUrl")
    page_url: str = Field(serialization_alias="pageUrl")


class CreatedFileSummary(BaseModel):
    id: int
    name: str
    size: int
    mime_type: str
    downloads: int
    created: Optional[datetime] = None
    total_views: int = 0


class ContentFileCreate(BaseModel):
    """Body of the create-from-content endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    content: str
    filename: str
    file_type: str = Field(alias="fileType")
    title: Optional[str] = None
    description: Optional[str] = None
