import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession
from sqlalchemy import select, func

from lead_magnet_client.exceptions import DatabaseError
from lead_magnet_client.db.analytics import AnalyticsEventORM
from lead_magnet_client.db.base import get_session

logger = logging.getLogger(__name__)


class AnalyticsRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(
        self,
        owner_id: int,
        event: str,
        page_id: Optional[int] = None,
        file_id: Optional[int] = None,
        data: Optional[dict[str, Any]] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        async with get_session(self._session_factory) as session:
            try:
                row = AnalyticsEventORM(
                    owner_id=owner_id,
                    event=event,
                    page_id=page_id,
                    file_id=file_id,
                    data=data or {},
                    user_agent=user_agent,
                    ip_address=ip_address,
                )
                session.add(row)
                await session.commit()
                return row.id
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to record '{event}' event: {e}") from e

    async def count(self, owner_id: int, event: str | None = None) -> int:
        async with get_session(self._session_factory) as session:
            stmt = select(func.count(AnalyticsEventORM.id)).where(AnalyticsEventORM.owner_id == owner_id)
            if event:
                stmt = stmt.where(AnalyticsEventORM.event == event)
            return (await session.execute(stmt)).scalar_one()
