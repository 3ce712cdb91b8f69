"""
Usage Service - per-user, per-month assignment counter
"""
import logging
from typing import Optional

from crud.subscription import StoreUnavailableError
from crud.usage import UsageStore
from models.subscription import UsageSummary
from services.plan_catalog import UNLIMITED
from utils.time_utils import Clock, usage_period, utc_now

logger = logging.getLogger(__name__)


class UsageCounter:
    """
    Counts assignment creations per calendar month.
    Not a ledger: no audit trail and nothing is decremented on deletion.
    """

    def __init__(self, store: UsageStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def current_period(self) -> str:
        return usage_period(self.clock())

    async def increment(self, user_id: str) -> Optional[int]:
        """
        Record one assignment for the current period.

        Returns:
            The new count, or None if the store could not be updated
        """
        period = self.current_period()
        try:
            count = await self.store.increment(user_id, period)
        except StoreUnavailableError:
            return None
        logger.info(f"Assignment count for user {user_id} in {period} is now {count}")
        return count

    async def get_usage(self, user_id: str, limit: int) -> UsageSummary:
        """
        Usage for the current period against a limit.

        Raises:
            StoreUnavailableError: if the count could not be read
        """
        used = await self.store.get_count(user_id, self.current_period())
        if limit == UNLIMITED:
            return UsageSummary(used=used, limit=UNLIMITED, remaining=UNLIMITED)
        return UsageSummary(used=used, limit=limit, remaining=max(0, limit - used))
