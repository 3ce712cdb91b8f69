"""
Assignment usage stores, keyed by (user_id, period)
"""

import logging
from typing import Dict, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from crud.subscription import StoreUnavailableError, insert_for
from database_models import AssignmentUsageRow

logger = logging.getLogger(__name__)


class UsageStore:
    """
    Contract for per-user monthly assignment counts.
    A period is a "YYYY-MM" bucket; counts start at zero each period.
    """

    async def get_count(self, user_id: str, period: str) -> int:
        """Count for the period (0 if none). Raises StoreUnavailableError on failure."""
        raise NotImplementedError

    async def increment(self, user_id: str, period: str) -> int:
        """Add one and return the new count. Raises StoreUnavailableError on failure."""
        raise NotImplementedError


class SqlUsageStore(UsageStore):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_count(self, user_id: str, period: str) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(AssignmentUsageRow.count).where(
                        AssignmentUsageRow.user_id == user_id,
                        AssignmentUsageRow.period == period,
                    )
                )
                count = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to read usage for user {user_id} ({period}): {e}")
            raise StoreUnavailableError(str(e)) from e
        return count or 0

    async def increment(self, user_id: str, period: str) -> int:
        try:
            async with self.session_factory() as session:
                insert = insert_for(session)
                stmt = insert(AssignmentUsageRow).values(user_id=user_id, period=period, count=1)
                # Atomic read-modify-write in a single statement
                stmt = stmt.on_conflict_do_update(
                    index_elements=[AssignmentUsageRow.user_id, AssignmentUsageRow.period],
                    set_={"count": AssignmentUsageRow.count + 1},
                ).returning(AssignmentUsageRow.count)
                result = await session.execute(stmt)
                count = result.scalar_one()
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to increment usage for user {user_id} ({period}): {e}")
            raise StoreUnavailableError(str(e)) from e
        return count


class InMemoryUsageStore(UsageStore):
    def __init__(self):
        self._counts: Dict[Tuple[str, str], int] = {}

    async def get_count(self, user_id: str, period: str) -> int:
        return self._counts.get((user_id, period), 0)

    async def increment(self, user_id: str, period: str) -> int:
        key = (user_id, period)
        self._counts[key] = self._counts.get(key, 0) + 1
        return self._counts[key]
