import logging
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from lead_magnet_client.exceptions import DatabaseError
from lead_magnet_client.models.user import UserProfile
from lead_magnet_client.db.users import UserORM
from lead_magnet_client.db.files import FileORM
from lead_magnet_client.db.pages import PageORM
from lead_magnet_client.db.base import get_session

logger = logging.getLogger(__name__)


class UserRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_user(self, email: str, name: str | None = None) -> UserORM:
        async with get_session(self._session_factory) as session:
            user = UserORM(email=email.strip().lower(), name=name, is_active=True)
            session.add(user)
            try:
                await session.commit()
                await session.refresh(user)
                logger.info(f"Created user {user.id} <{user.email}>")
                return user
            except IntegrityError as e:
                await session.rollback()
                raise DatabaseError(f"User with email {email} already exists.") from e

    async def get_by_id(self, user_id: int) -> Optional[UserORM]:
        async with get_session(self._session_factory) as session:
            return await session.get(UserORM, user_id)

    async def get_profile(self, user_id: int) -> Optional[UserProfile]:
        async with get_session(self._session_factory) as session:
            user = await session.get(UserORM, user_id)
            if user is None:
                return None
            return await self._profile(session, user)

    async def update_profile(self, user_id: int, values: dict) -> Optional[UserProfile]:
        async with get_session(self._session_factory) as session:
            try:
                user = await session.get(UserORM, user_id)
                if user is None:
                    return None
                for key, value in values.items():
                    setattr(user, key, value)
                await session.commit()
                await session.refresh(user)
                logger.info(f"User profile updated: {user_id}")
                return await self._profile(session, user)
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e

    @staticmethod
    async def _profile(session: AsyncSession, user: UserORM) -> UserProfile:
        file_count = (await session.execute(
            select(func.count(FileORM.id)).where(FileORM.owner_id == user.id, FileORM.is_active.is_(True))
        )).scalar_one()
        page_count = (await session.execute(
            select(func.count(PageORM.id)).where(PageORM.owner_id == user.id, PageORM.is_active.is_(True))
        )).scalar_one()
        profile = UserProfile.model_validate(user)
        return profile.model_copy(update={"file_count": file_count, "page_count": page_count})
