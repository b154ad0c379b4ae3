import logging
from typing import Optional, Sequence

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from lead_magnet_client.exceptions import DatabaseError
from lead_magnet_client.models.page import PageInDB, PageFileInDB
from lead_magnet_client.db.pages import PageORM, PageFileORM
from lead_magnet_client.db.base import get_session

logger = logging.getLogger(__name__)


class PageRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _load(self, session: AsyncSession, page_id: int) -> Optional[PageORM]:
        res = await session.execute(select(PageORM).where(PageORM.id == page_id))
        return res.unique().scalar_one_or_none()

    async def create(self, page: PageORM) -> PageInDB:
        async with get_session(self._session_factory) as session:
            try:
                session.add(page)
                await session.commit()
                orm = await self._reload(session, page.id)
                return PageInDB.model_validate(orm)
            except IntegrityError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to save page: {e}") from e

    async def slug_exists(self, slug: str) -> bool:
        async with get_session(self._session_factory) as session:
            stmt = select(func.count(PageORM.id)).where(PageORM.slug == slug)
            return (await session.execute(stmt)).scalar_one() > 0

    async def get(self, page_id: int) -> Optional[PageInDB]:
        async with get_session(self._session_factory) as session:
            orm = await self._load(session, page_id)
            return PageInDB.model_validate(orm) if orm else None

    async def get_by_slug(self, slug: str) -> Optional[PageInDB]:
        async with get_session(self._session_factory) as session:
            res = await session.execute(select(PageORM).where(PageORM.slug == slug))
            orm = res.unique().scalar_one_or_none()
            return PageInDB.model_validate(orm) if orm else None

    async def list_for_owner(self, owner_id: int) -> list[PageInDB]:
        async with get_session(self._session_factory) as session:
            stmt = (
                select(PageORM)
                .where(PageORM.owner_id == owner_id)
                .order_by(PageORM.created.desc(), PageORM.id.desc())
            )
            rows = await session.execute(stmt)
            return [PageInDB.model_validate(o) for o in rows.unique().scalars().all()]

    async def update(self, page_id: int, patch: dict) -> Optional[PageInDB]:
        async with get_session(self._session_factory) as session:
            try:
                orm = await self._load(session, page_id)
                if orm is None:
                    return None
                for key, value in patch.items():
                    setattr(orm, key, value)
                await session.commit()
                orm = await self._reload(session, page_id)
                return PageInDB.model_validate(orm)
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e

    async def _reload(self, session: AsyncSession, page_id: int) -> Optional[PageORM]:
        session.expire_all()
        return await self._load(session, page_id)

    async def delete(self, page_id: int) -> bool:
        async with get_session(self._session_factory) as session:
            try:
                orm = await session.get(PageORM, page_id)
                if orm is None:
                    return False
                await session.delete(orm)
                await session.commit()
                return True
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e

    async def increment_views(self, page_id: int):
        async with get_session(self._session_factory) as session:
            await session.execute(
                update(PageORM).where(PageORM.id == page_id).values(views=PageORM.views + 1)
            )
            await session.commit()

    # ――― page ↔ file links ――― #

    async def list_page_files(self, page_id: int) -> list[PageFileInDB]:
        async with get_session(self._session_factory) as session:
            stmt = (
                select(PageFileORM)
                .where(PageFileORM.page_id == page_id)
                .order_by(PageFileORM.position, PageFileORM.id)
            )
            rows = await session.execute(stmt)
            return [PageFileInDB.model_validate(o) for o in rows.unique().scalars().all()]

    async def get_page_file(self, page_id: int, file_id: int) -> Optional[PageFileInDB]:
        async with get_session(self._session_factory) as session:
            orm = await self._get_link(session, page_id, file_id)
            return PageFileInDB.model_validate(orm) if orm else None

    async def _get_link(self, session: AsyncSession, page_id: int, file_id: int) -> Optional[PageFileORM]:
        stmt = select(PageFileORM).where(PageFileORM.page_id == page_id, PageFileORM.file_id == file_id)
        return (await session.execute(stmt)).unique().scalar_one_or_none()

    async def replace_page_files(self, page_id: int, file_ids: Sequence[int]) -> list[PageFileInDB]:
        """Drops all links of the page and recreates them in order; the first file is primary."""
        async with get_session(self._session_factory) as session:
            try:
                await session.execute(delete(PageFileORM).where(PageFileORM.page_id == page_id))
                for position, file_id in enumerate(file_ids):
                    session.add(PageFileORM(
                        page_id=page_id,
                        file_id=file_id,
                        position=position,
                        is_primary=position == 0,
                    ))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e
        return await self.list_page_files(page_id)

    async def add_page_file(self, page_id: int, file_id: int, position: int | None, is_primary: bool) -> PageFileInDB:
        async with get_session(self._session_factory) as session:
            try:
                if position is None:
                    max_pos = (
                        await session.execute(
                            select(func.max(PageFileORM.position)).where(PageFileORM.page_id == page_id)
                        )
                    ).scalar_one_or_none()
                    position = (max_pos or 0) + 1
                if is_primary:
                    await self._clear_primary(session, page_id)
                link = PageFileORM(page_id=page_id, file_id=file_id, position=position, is_primary=is_primary)
                session.add(link)
                await session.commit()
                link_id = link.id
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e
        return await self._get_link_by_id(link_id)

    async def update_page_file(
        self, page_id: int, file_id: int, position: int | None, is_primary: bool | None
    ) -> Optional[PageFileInDB]:
        async with get_session(self._session_factory) as session:
            try:
                link = await self._get_link(session, page_id, file_id)
                if link is None:
                    return None
                if is_primary is True:
                    await self._clear_primary(session, page_id, exclude_id=link.id)
                if position is not None:
                    link.position = position
                if is_primary is not None:
                    link.is_primary = is_primary
                await session.commit()
                link_id = link.id
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e
        return await self._get_link_by_id(link_id)

    async def remove_page_file(self, page_id: int, file_id: int) -> bool:
        async with get_session(self._session_factory) as session:
            res = await session.execute(
                delete(PageFileORM).where(PageFileORM.page_id == page_id, PageFileORM.file_id == file_id)
            )
            await session.commit()
            return res.rowcount > 0

    async def _clear_primary(self, session: AsyncSession, page_id: int, exclude_id: int | None = None):
        stmt = update(PageFileORM).where(PageFileORM.page_id == page_id, PageFileORM.is_primary.is_(True))
        if exclude_id is not None:
            stmt = stmt.where(PageFileORM.id != exclude_id)
        await session.execute(stmt.values(is_primary=False))

    async def _get_link_by_id(self, link_id: int) -> PageFileInDB:
        async with get_session(self._session_factory) as session:
            res = await session.execute(select(PageFileORM).where(PageFileORM.id == link_id))
            return PageFileInDB.model_validate(res.unique().scalar_one())
