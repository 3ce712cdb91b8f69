"""
Subscription stores: SQL-backed repository and in-memory fallback
"""

import logging
from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database_models import SubscriptionRow
from models.subscription import SubscriptionRecord, SubscriptionStatus
from utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)

# Fields a later upsert may change; trial_end_date and created_at are insert-only
UPSERT_MUTABLE_FIELDS = ("plan", "status", "upgraded_at")
STATUS_EXTRA_FIELDS = ("upgraded_at",)


class StoreUnavailableError(Exception):
    """The backing store could not be asked. Distinct from "record absent"."""


def insert_for(session: AsyncSession):
    """Dialect-specific INSERT construct supporting ON CONFLICT clauses."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise StoreUnavailableError(f"Upsert is not supported on dialect '{dialect}'")


class SubscriptionStore:
    """
    Contract shared by every subscription backend.
    Pure CRUD keyed by user_id; no business rules live here.
    """

    async def get(self, user_id: str) -> Optional[SubscriptionRecord]:
        """
        Fetch the record for a user.

        Returns:
            The record, or None if the user has none

        Raises:
            StoreUnavailableError: if the backend could not be queried
        """
        raise NotImplementedError

    async def insert_if_absent(self, record: SubscriptionRecord) -> bool:
        """
        Insert the record unless the user already has one; an existing row
        is left untouched. Returns False only on backend failure.
        """
        raise NotImplementedError

    async def upsert(self, record: SubscriptionRecord) -> bool:
        """Insert or update by user_id. Returns False on backend failure."""
        raise NotImplementedError

    async def update_status(
        self,
        user_id: str,
        status: SubscriptionStatus,
        extra: Optional[dict] = None,
        expected_status: Optional[SubscriptionStatus] = None,
    ) -> bool:
        """
        Overwrite the status of an existing record.
        With expected_status, only a row currently in that status is changed.
        False if absent, not in the expected status, or on failure.
        """
        raise NotImplementedError


def _row_to_record(row: SubscriptionRow) -> SubscriptionRecord:
    return SubscriptionRecord(
        user_id=row.user_id,
        plan_id=row.plan,
        status=SubscriptionStatus(row.status),
        trial_end_date=ensure_utc(row.trial_end_date),
        upgraded_at=ensure_utc(row.upgraded_at),
        created_at=ensure_utc(row.created_at),
    )


def _record_values(record: SubscriptionRecord) -> dict:
    return {
        "user_id": record.user_id,
        "plan": record.plan_id,
        "status": record.status.value,
        "trial_end_date": record.trial_end_date,
        "upgraded_at": record.upgraded_at,
        "created_at": record.created_at,
    }


class SqlSubscriptionStore(SubscriptionStore):
    """
    Repository for the subscriptions table.
    Opens one short-lived session per operation so a single instance can
    live for the whole process.
    """

    def __init__(self, session_factory: async_sessionmaker):
        """
        Initialize the repository with a session factory.

        Args:
            session_factory: async_sessionmaker bound to the subscriptions database
        """
        self.session_factory = session_factory

    async def get(self, user_id: str) -> Optional[SubscriptionRecord]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
                )
                row = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to read subscription for user {user_id}: {e}")
            raise StoreUnavailableError(str(e)) from e

        return _row_to_record(row) if row is not None else None

    async def insert_if_absent(self, record: SubscriptionRecord) -> bool:
        try:
            async with self.session_factory() as session:
                insert = insert_for(session)
                stmt = insert(SubscriptionRow).values(**_record_values(record))
                stmt = stmt.on_conflict_do_nothing(index_elements=[SubscriptionRow.user_id])
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError, StoreUnavailableError) as e:
            logger.error(f"Failed to create subscription for user {record.user_id}: {e}")
            return False
        return True

    async def upsert(self, record: SubscriptionRecord) -> bool:
        try:
            async with self.session_factory() as session:
                insert = insert_for(session)
                stmt = insert(SubscriptionRow).values(**_record_values(record))
                stmt = stmt.on_conflict_do_update(
                    index_elements=[SubscriptionRow.user_id],
                    set_={field: stmt.excluded[field] for field in UPSERT_MUTABLE_FIELDS},
                )
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError, StoreUnavailableError) as e:
            logger.error(f"Failed to upsert subscription for user {record.user_id}: {e}")
            return False
        return True

    async def update_status(
        self,
        user_id: str,
        status: SubscriptionStatus,
        extra: Optional[dict] = None,
        expected_status: Optional[SubscriptionStatus] = None,
    ) -> bool:
        values = {"status": status.value}
        for key, value in (extra or {}).items():
            if key in STATUS_EXTRA_FIELDS:
                values[key] = value

        stmt = update(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
        if expected_status is not None:
            stmt = stmt.where(SubscriptionRow.status == expected_status.value)
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt.values(**values))
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to update status for user {user_id}: {e}")
            return False
        return result.rowcount > 0


class InMemorySubscriptionStore(SubscriptionStore):
    """
    Process-local fallback used when no database is configured.
    Same semantics as the SQL store; contents are lost on restart.
    """

    def __init__(self):
        self._records: Dict[str, SubscriptionRecord] = {}

    async def get(self, user_id: str) -> Optional[SubscriptionRecord]:
        record = self._records.get(user_id)
        return record.model_copy() if record is not None else None

    async def insert_if_absent(self, record: SubscriptionRecord) -> bool:
        self._records.setdefault(record.user_id, record.model_copy())
        return True

    async def upsert(self, record: SubscriptionRecord) -> bool:
        existing = self._records.get(record.user_id)
        if existing is None:
            self._records[record.user_id] = record.model_copy()
        else:
            self._records[record.user_id] = existing.model_copy(update={
                "plan_id": record.plan_id,
                "status": record.status,
                "upgraded_at": record.upgraded_at,
            })
        return True

    async def update_status(
        self,
        user_id: str,
        status: SubscriptionStatus,
        extra: Optional[dict] = None,
        expected_status: Optional[SubscriptionStatus] = None,
    ) -> bool:
        existing = self._records.get(user_id)
        if existing is None:
            return False
        if expected_status is not None and existing.status != expected_status:
            return False
        changes = {"status": status}
        for key, value in (extra or {}).items():
            if key in STATUS_EXTRA_FIELDS:
                changes[key] = value
        self._records[user_id] = existing.model_copy(update=changes)
        return True
