from __future__ import annotations
from typing import TYPE_CHECKING

from sqlalchemy import String, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, CreatedAt

if TYPE_CHECKING:
    from .files import FileORM
    from .pages import PageORM


class UserORM(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    bio: Mapped[str | None] = mapped_column(Text)
    location: Mapped[str | None] = mapped_column(String(255))
    website: Mapped[str | None] = mapped_column(String(255))
    company: Mapped[str | None] = mapped_column(String(255))
    profile_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created: Mapped[CreatedAt]

    files: Mapped[list["FileORM"]] = relationship("FileORM", back_populates="owner", cascade="all, delete-orphan")
    pages: Mapped[list["PageORM"]] = relationship("PageORM", back_populates="owner", cascade="all, delete-orphan")
