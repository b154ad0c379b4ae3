from __future__ import annotations
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Integer, Boolean, ForeignKey, JSON, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lead_magnet_client.db.base import Base, CreatedAt, UpdatedAt

if TYPE_CHECKING:
    from .users import UserORM
    from .files import FileORM
    from .leads import LeadORM


class PageORM(Base):
    __tablename__ = "pages"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # primary file shown on the landing page
    file_id: Mapped[Optional[int]] = mapped_column(ForeignKey("files.id", ondelete="SET NULL"), index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    template: Mapped[str] = mapped_column(String(64), nullable=False, default="xiyi-download")
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    created: Mapped[CreatedAt]
    edited: Mapped[UpdatedAt]

    owner: Mapped["UserORM"] = relationship("UserORM", back_populates="pages")
    file: Mapped[Optional["FileORM"]] = relationship("FileORM", back_populates="pages", lazy="joined")
    page_files: Mapped[list["PageFileORM"]] = relationship(
        "PageFileORM",
        back_populates="page",
        cascade="all, delete-orphan",
        order_by="PageFileORM.position",
    )
    leads: Mapped[list["LeadORM"]] = relationship("LeadORM", back_populates="page", cascade="all, delete-orphan")


class PageFileORM(Base):
    __tablename__ = "page_files"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    page_id: Mapped[int] = mapped_column(ForeignKey("pages.id", ondelete="CASCADE"), nullable=False, index=True)
    file_id: Mapped[int] = mapped_column(ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    page: Mapped["PageORM"] = relationship("PageORM", back_populates="page_files")
    file: Mapped["FileORM"] = relationship("FileORM", back_populates="page_links", lazy="joined")

    __table_args__ = (
        UniqueConstraint("page_id", "file_id", name="uq_page_files_page_file"),
    )
