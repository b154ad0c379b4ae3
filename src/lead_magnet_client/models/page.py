from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .file import FileInDB


class PageCreate(BaseModel):
    title: str
    description: str = ""
    content: str = ""
    file_id: Optional[int] = None
    template: Optional[str] = None
    require_email: bool = True


class PageUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    # 0 detaches the primary file
    file_id: Optional[int] = None
    settings: Optional[dict[str, Any]] = None
    is_active: Optional[bool] = None


class PageInDB(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    file_id: Optional[int] = None
    title: str
    description: str = ""
    content: str = ""
    slug: str
    template: str
    settings: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    views: int = 0
    created: Optional[datetime] = None
    edited: Optional[datetime] = None
    file: Optional[FileInDB] = None


class PageFileInDB(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    page_id: int
    file_id: int
    position: int
    is_primary: bool
    file: FileInDB


class PageFilesSet(BaseModel):
    file_ids: list[int]


class PageFileLink(BaseModel):
    position: Optional[int] = None
    is_primary: Optional[bool] = None
