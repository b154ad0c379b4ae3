from __future__ import annotations
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, BigInteger, Integer, Boolean, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lead_magnet_client.db.base import Base, CreatedAt, UpdatedAt
from lead_magnet_client.models.file import FileInDB

if TYPE_CHECKING:
    from .users import UserORM
    from .pages import PageORM, PageFileORM


class FileORM(Base):
    __tablename__ = "files"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)                # display name
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)       # name as uploaded
    description: Mapped[Optional[str]] = mapped_column(Text)
    # NULL for synthetic files that only carry inline content
    storage_key: Mapped[Optional[str]] = mapped_column(String(512), unique=True)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False, default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    download_slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    downloads: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    content: Mapped[Optional[str]] = mapped_column(Text)

    created: Mapped[CreatedAt]
    edited: Mapped[UpdatedAt]

    owner: Mapped["UserORM"] = relationship("UserORM", back_populates="files")
    pages: Mapped[list["PageORM"]] = relationship("PageORM", back_populates="file")
    page_links: Mapped[list["PageFileORM"]] = relationship(
        "PageFileORM", back_populates="file", cascade="all, delete-orphan"
    )

    __table_args__ = (
        # Dedup key for uploaded files; generated files may repeat a name.
        Index(
            "uq_files_owner_name_size",
            "owner_id", "original_name", "size_bytes",
            unique=True,
            postgresql_where=text("is_created = false"),
            sqlite_where=text("is_created = false"),
        ),
        Index("idx_files_owner_created", "owner_id", "created"),
    )

    def to_pydantic(self) -> FileInDB:
        return FileInDB.model_validate(self)
