from typing import Generic, TypeVar, Type, List, Optional, Any, Dict
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sched_core.db import Base

ModelType = TypeVar("ModelType", bound=Base)


def dialect_insert(db: AsyncSession, model):
    """
    INSERT construct for the session's dialect, so callers can use ON CONFLICT.
    """
    if db.bind.dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


class AsyncBaseRepository(Generic[ModelType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    def _where(self, stmt, condition: Dict[str, Any]):
        where_conditions = []
        for attr, value in condition.items():
            if hasattr(self.model, attr):
                if isinstance(value, list):
                    where_conditions.append(getattr(self.model, attr).in_(value))
                else:
                    where_conditions.append(getattr(self.model, attr) == value)

        if where_conditions:
            stmt = stmt.where(and_(*where_conditions))
        return stmt

    async def create(self, db: AsyncSession, *, obj_in: Dict[str, Any]) -> ModelType:
        """
        Create a new record.
        """
        try:
            db_obj = self.model(**obj_in)
            db.add(db_obj)
            await db.flush()  # Get ID without committing transaction
            await db.refresh(db_obj)
            return db_obj
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def get(self, db: AsyncSession, id: Any) -> Optional[ModelType]:
        """
        Get a record by id.
        """
        stmt = select(self.model).where(self.model.id == id).execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_condition(
            self,
            db: AsyncSession,
            condition: Dict[str, Any],
            limit: Optional[int] = None,
            order_by=None,
    ) -> List[ModelType]:
        """
        Get records based on conditions.
        """
        stmt = self._where(select(self.model), condition).execution_options(populate_existing=True)

        if order_by is not None:
            stmt = stmt.order_by(order_by)

        if limit:
            stmt = stmt.limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_one_by_condition(
            self,
            db: AsyncSession,
            condition: Dict[str, Any],
    ) -> Optional[ModelType]:
        """
        Get single record based on conditions.
        """
        results = await self.get_by_condition(db, condition, limit=1)
        return results[0] if results else None

    async def update(
            self,
            db: AsyncSession,
            *,
            id: Any,
            obj_in: Dict[str, Any],
    ) -> Optional[ModelType]:
        """
        Update a record by id.
        """
        try:
            db_obj = await self.get(db, id)
            if not db_obj:
                return None

            for key, value in obj_in.items():
                if hasattr(db_obj, key):
                    setattr(db_obj, key, value)

            if hasattr(db_obj, 'updated_at'):
                setattr(db_obj, 'updated_at', datetime.now(timezone.utc))

            db.add(db_obj)
            await db.flush()
            await db.refresh(db_obj)
            return db_obj
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def compare_and_set(
            self,
            db: AsyncSession,
            *,
            id: Any,
            expected: Dict[str, Any],
            values: Dict[str, Any],
    ) -> bool:
        """
        Conditional update: applies values only while the row still matches expected.

        Returns True when this caller won the transition.
        """
        try:
            if hasattr(self.model, 'updated_at') and 'updated_at' not in values:
                values = {**values, 'updated_at': datetime.now(timezone.utc)}

            stmt = self._where(update(self.model).where(self.model.id == id), expected)
            stmt = stmt.values(**values).execution_options(synchronize_session=False)
            result = await db.execute(stmt)
            return result.rowcount == 1
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def bulk_update(
            self,
            db: AsyncSession,
            condition: Dict[str, Any],
            values: Dict[str, Any]
    ) -> int:
        """
        Bulk update records matching condition.
        """
        try:
            if hasattr(self.model, 'updated_at'):
                values['updated_at'] = datetime.now(timezone.utc)

            stmt = self._where(update(self.model), condition)
            stmt = stmt.values(**values).execution_options(synchronize_session=False)
            result = await db.execute(stmt)
            return result.rowcount
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def count(
            self,
            db: AsyncSession,
            condition: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Count records with optional conditions.
        """
        stmt = select(func.count()).select_from(self.model)
        if condition:
            stmt = self._where(stmt, condition)

        result = await db.execute(stmt)
        return result.scalar() or 0


class ClaimableRepository(AsyncBaseRepository[ModelType]):
    """
    Shared claim-and-process queries for job tables.

    A row is due when it sits in ready_status with run_after <= now, or when it
    has been in claimed_status since before the stale cutoff (its worker died
    or overran the lock TTL). The claimed_at timestamp doubles as the claim token.
    """

    ready_status: str = None
    claimed_status: str = None

    def _ready_clause(self, now: datetime):
        return and_(self.model.status == self.ready_status, self.model.run_after <= now)

    def _stale_clause(self, stale_before: datetime):
        return and_(self.model.status == self.claimed_status, self.model.claimed_at <= stale_before)

    async def find_due(
            self,
            db: AsyncSession,
            *,
            now: datetime,
            stale_before: datetime,
            limit: int,
    ) -> List[ModelType]:
        stmt = (
            select(self.model)
            .where(or_(self._ready_clause(now), self._stale_clause(stale_before)))
            .order_by(self.model.run_after.asc(), self.model.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def claim(
            self,
            db: AsyncSession,
            item: ModelType,
            *,
            now: datetime,
            extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        ready -> claimed (or re-claim of a stale row). Loses silently when
        another instance moved the row first.
        """
        values = {"status": self.claimed_status, "claimed_at": now}
        if extra:
            values.update(extra)

        return await self.compare_and_set(
            db,
            id=item.id,
            expected={"status": item.status, "claimed_at": item.claimed_at},
            values=values,
        )

    async def finish_claimed(
            self,
            db: AsyncSession,
            *,
            item_id: Any,
            claimed_at: datetime,
            values: Dict[str, Any],
    ) -> bool:
        """
        Apply the outcome of processing, only while our claim is still current.
        """
        return await self.compare_and_set(
            db,
            id=item_id,
            expected={"status": self.claimed_status, "claimed_at": claimed_at},
            values=values,
        )
