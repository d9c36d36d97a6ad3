from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sched_core.models.coordinator_preference import CoordinatorPreference
from sched_core.repositories.base_repository import AsyncBaseRepository


class PreferenceRepository(AsyncBaseRepository[CoordinatorPreference]):
    def __init__(self):
        super().__init__(CoordinatorPreference)

    async def get_for_user(self, db: AsyncSession, user_id: str) -> Optional[CoordinatorPreference]:
        return await self.get_one_by_condition(db, {"user_id": user_id})
