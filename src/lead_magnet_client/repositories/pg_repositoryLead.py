import logging
import math
from typing import Optional

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from lead_magnet_client.exceptions import ConflictError, DatabaseError
from lead_magnet_client.models.lead import LeadInDB, CustomerInDB, CustomerPage
from lead_magnet_client.db.leads import LeadORM, CustomerORM
from lead_magnet_client.db.pages import PageORM
from lead_magnet_client.db.base import get_session

logger = logging.getLogger(__name__)


class LeadRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert_lead(self, page_id: int, email: str, name: str | None = None) -> tuple[LeadInDB, bool]:
        """One lead per (page, email). Returns (lead, created)."""
        async with get_session(self._session_factory) as session:
            stmt = select(LeadORM).where(LeadORM.page_id == page_id, LeadORM.email == email)
            existing = (await session.execute(stmt)).scalar_one_or_none()
            if existing:
                return LeadInDB.model_validate(existing), False
            lead = LeadORM(page_id=page_id, email=email, name=name)
            session.add(lead)
            try:
                await session.commit()
                await session.refresh(lead)
                return LeadInDB.model_validate(lead), True
            except IntegrityError:
                # a concurrent submission inserted the same lead first
                await session.rollback()
                existing = (await session.execute(stmt)).scalar_one()
                return LeadInDB.model_validate(existing), False

    async def upsert_customer(self, email: str, name: str | None, note: str) -> CustomerInDB:
        """Creates a 'potential' customer or appends the note to an existing one."""
        async with get_session(self._session_factory) as session:
            try:
                stmt = select(CustomerORM).where(CustomerORM.email == email)
                customer = (await session.execute(stmt)).scalar_one_or_none()
                if customer is None:
                    customer = CustomerORM(email=email, name=name, status="potential", notes=note)
                    session.add(customer)
                else:
                    if name:
                        customer.name = name
                    customer.notes = f"{customer.notes}\n{note}" if customer.notes else note
                await session.commit()
                await session.refresh(customer)
                return CustomerInDB.model_validate(customer)
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to save customer: {e}") from e

    async def list_leads(self, owner_id: int, page_id: Optional[int] = None) -> list[LeadInDB]:
        async with get_session(self._session_factory) as session:
            stmt = (
                select(LeadORM)
                .join(PageORM, PageORM.id == LeadORM.page_id)
                .where(PageORM.owner_id == owner_id)
                .order_by(LeadORM.created.desc(), LeadORM.id.desc())
            )
            if page_id is not None:
                stmt = stmt.where(LeadORM.page_id == page_id)
            rows = await session.execute(stmt)
            return [LeadInDB.model_validate(o) for o in rows.scalars().all()]

    async def list_customers(
        self,
        search: str = "",
        status: str = "",
        page: int = 1,
        limit: int = 10,
    ) -> CustomerPage:
        page = max(page, 1)
        limit = max(limit, 1)
        async with get_session(self._session_factory) as session:
            conditions = []
            if search:
                pattern = f"%{search}%"
                conditions.append(or_(CustomerORM.name.ilike(pattern), CustomerORM.email.ilike(pattern)))
            if status:
                conditions.append(CustomerORM.status == status)

            total = (
                await session.execute(select(func.count(CustomerORM.id)).where(*conditions))
            ).scalar_one()
            rows = await session.execute(
                select(CustomerORM)
                .where(*conditions)
                .order_by(CustomerORM.created.desc(), CustomerORM.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return CustomerPage(
                customers=[CustomerInDB.model_validate(o) for o in rows.scalars().all()],
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            )

    # ――― customers ――― #

    async def get_customer(self, customer_id: int) -> Optional[CustomerInDB]:
        async with get_session(self._session_factory) as session:
            orm = await session.get(CustomerORM, customer_id)
            return CustomerInDB.model_validate(orm) if orm else None

    async def get_customer_by_email(self, email: str) -> Optional[CustomerInDB]:
        async with get_session(self._session_factory) as session:
            stmt = select(CustomerORM).where(CustomerORM.email == email)
            orm = (await session.execute(stmt)).scalar_one_or_none()
            return CustomerInDB.model_validate(orm) if orm else None

    async def create_customer(self, values: dict) -> CustomerInDB:
        async with get_session(self._session_factory) as session:
            customer = CustomerORM(**values)
            session.add(customer)
            try:
                await session.commit()
                await session.refresh(customer)
                return CustomerInDB.model_validate(customer)
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError("Email is already in use") from e

    async def update_customer(self, customer_id: int, values: dict) -> Optional[CustomerInDB]:
        async with get_session(self._session_factory) as session:
            try:
                customer = await session.get(CustomerORM, customer_id)
                if customer is None:
                    return None
                for key, value in values.items():
                    setattr(customer, key, value)
                await session.commit()
                await session.refresh(customer)
                return CustomerInDB.model_validate(customer)
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError("Email is already in use") from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e

    async def delete_customer(self, customer_id: int) -> bool:
        async with get_session(self._session_factory) as session:
            try:
                customer = await session.get(CustomerORM, customer_id)
                if customer is None:
                    return False
                await session.delete(customer)
                await session.commit()
                return True
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(str(e)) from e
