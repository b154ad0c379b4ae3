import logging
from typing import Optional, Sequence

from sqlalchemy import select, update, func, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from lead_magnet_client.exceptions import DatabaseError
from lead_magnet_client.models.file import FileInDB, CreatedFileSummary
from lead_magnet_client.db.files import FileORM
from lead_magnet_client.db.pages import PageORM
from lead_magnet_client.db.base import get_session

logger = logging.getLogger(__name__)


class FileRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def check_connection(self):
        """Runs a trivial query to prove the database is reachable."""
        logger.debug("Checking database connection...")
        async with get_session(self._session_factory) as session:
            try:
                await session.execute(text("SELECT 1"))
                logger.debug("Database connection successful.")
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"Database connection failed: {e}")
                raise DatabaseError("Failed to connect to the database.") from e

    async def find_existing(self, owner_id: int, original_name: str, size_bytes: int) -> Optional[FileInDB]:
        """First uploaded record matching the dedup key, or None."""
        async with get_session(self._session_factory) as session:
            try:
                stmt = (
                    select(FileORM)
                    .where(
                        FileORM.owner_id == owner_id,
                        FileORM.original_name == original_name,
                        FileORM.size_bytes == size_bytes,
                        FileORM.is_created.is_(False),
                    )
                    .order_by(FileORM.id)
                    .limit(1)
                )
                orm = (await session.execute(stmt)).scalar_one_or_none()
                return orm.to_pydantic() if orm else None
            except SQLAlchemyError as e:
                raise DatabaseError(f"Duplicate lookup failed: {e}") from e

    async def create_if_absent(self, file: FileORM) -> tuple[FileInDB, bool]:
        """
        Inserts an uploaded file record.

        Returns (record, True) when the row was inserted. When another writer
        already holds the (owner, original name, size) key the insert is
        rolled back and (existing record, False) is returned.
        """
        async with get_session(self._session_factory) as session:
            try:
                session.add(file)
                await session.commit()
                await session.refresh(file)
                return file.to_pydantic(), True
            except IntegrityError as e:
                await session.rollback()
                existing = await self.find_existing(file.owner_id, file.original_name, file.size_bytes)
                if existing is None:
                    raise DatabaseError(f"Failed to save file metadata: {e}") from e
                logger.info(f"Lost insert race for '{file.original_name}', reusing record {existing.id}")
                return existing, False
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to save file metadata: {e}") from e

    async def save(self, file: FileORM) -> FileInDB:
        async with get_session(self._session_factory) as session:
            try:
                session.add(file)
                await session.commit()
                await session.refresh(file)
                return file.to_pydantic()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to save file metadata: {e}") from e

    async def get(self, file_id: int, owner_id: int | None = None) -> Optional[FileInDB]:
        async with get_session(self._session_factory) as session:
            stmt = select(FileORM).where(FileORM.id == file_id)
            if owner_id is not None:
                stmt = stmt.where(FileORM.owner_id == owner_id)
            orm = (await session.execute(stmt)).scalar_one_or_none()
            return orm.to_pydantic() if orm else None

    async def get_by_slug(self, download_slug: str) -> Optional[FileInDB]:
        async with get_session(self._session_factory) as session:
            stmt = select(FileORM).where(FileORM.download_slug == download_slug)
            orm = (await session.execute(stmt)).scalar_one_or_none()
            return orm.to_pydantic() if orm else None

    async def slug_exists(self, download_slug: str) -> bool:
        async with get_session(self._session_factory) as session:
            stmt = select(func.count(FileORM.id)).where(FileORM.download_slug == download_slug)
            return (await session.execute(stmt)).scalar_one() > 0

    async def list_for_owner(self, owner_id: int) -> list[FileInDB]:
        async with get_session(self._session_factory) as session:
            stmt = select(FileORM).where(FileORM.owner_id == owner_id)
            stmt = stmt.order_by(FileORM.created.desc(), FileORM.id.desc())
            rows = await session.execute(stmt)
            return [o.to_pydantic() for o in rows.scalars().all()]

    async def list_owned(self, owner_id: int, file_ids: Sequence[int], active_only: bool = True) -> list[FileInDB]:
        async with get_session(self._session_factory) as session:
            stmt = select(FileORM).where(FileORM.owner_id == owner_id, FileORM.id.in_(list(file_ids)))
            if active_only:
                stmt = stmt.where(FileORM.is_active.is_(True))
            rows = await session.execute(stmt)
            return [o.to_pydantic() for o in rows.scalars().all()]

    async def list_created_with_views(self, owner_id: int) -> list[CreatedFileSummary]:
        """Generated files with the views of their pages summed up."""
        async with get_session(self._session_factory) as session:
            stmt = (
                select(FileORM, func.coalesce(func.sum(PageORM.views), 0))
                .outerjoin(PageORM, PageORM.file_id == FileORM.id)
                .where(FileORM.owner_id == owner_id, FileORM.is_created.is_(True))
                .group_by(FileORM.id)
                .order_by(FileORM.created.desc(), FileORM.id.desc())
            )
            rows = (await session.execute(stmt)).all()
            return [
                CreatedFileSummary(
                    id=f.id,
                    name=f.name,
                    size=f.size_bytes,
                    mime_type=f.mime_type,
                    downloads=f.downloads,
                    created=f.created,
                    total_views=int(views),
                )
                for f, views in rows
            ]

    async def update(self, file_id: int, owner_id: int, patch: dict) -> Optional[FileInDB]:
        async with get_session(self._session_factory) as session:
            try:
                orm = (
                    await session.execute(
                        select(FileORM).where(FileORM.id == file_id, FileORM.owner_id == owner_id)
                    )
                ).scalar_one_or_none()
                if orm is None:
                    return None
                for key, value in patch.items():
                    setattr(orm, key, value)
                await session.commit()
                await session.refresh(orm)
                return orm.to_pydantic()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e

    async def delete(self, file_id: int) -> bool:
        async with get_session(self._session_factory) as session:
            try:
                orm = await session.get(FileORM, file_id)
                if orm is None:
                    return False
                await session.delete(orm)
                await session.commit()
                return True
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e

    async def increment_downloads(self, file_id: int) -> int:
        """Single UPDATE so concurrent downloads never lose a count."""
        async with get_session(self._session_factory) as session:
            try:
                await session.execute(
                    update(FileORM)
                    .where(FileORM.id == file_id)
                    .values(downloads=FileORM.downloads + 1)
                )
                await session.commit()
                res = await session.execute(select(FileORM.downloads).where(FileORM.id == file_id))
                return res.scalar_one()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e
