from __future__ import annotations
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lead_magnet_client.db.base import Base, CreatedAt, UpdatedAt

if TYPE_CHECKING:
    from .pages import PageORM


class LeadORM(Base):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    page_id: Mapped[int] = mapped_column(ForeignKey("pages.id", ondelete="CASCADE"), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    created: Mapped[CreatedAt]

    page: Mapped["PageORM"] = relationship("PageORM", back_populates="leads")

    __table_args__ = (
        UniqueConstraint("page_id", "email", name="uq_leads_page_email"),
    )


class CustomerORM(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    company: Mapped[Optional[str]] = mapped_column(String(255))
    # 'potential' until someone on the creator side changes it
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="potential")
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created: Mapped[CreatedAt]
    edited: Mapped[UpdatedAt]
