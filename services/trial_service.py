"""
Trial Service - trial window arithmetic for subscription records
"""
import math
from datetime import datetime, timedelta

from models.subscription import SubscriptionRecord, SubscriptionStatus
from utils.time_utils import ensure_utc

SECONDS_PER_DAY = 86400


class TrialService:
    """
    Computes everything that depends on the trial window.
    The window is anchored on trial_end_date, which is fixed when the
    record is created; nothing here ever moves it.
    """

    def __init__(self, trial_days: int):
        """
        Args:
            trial_days: Length of a new trial, from the plan catalog
        """
        self.trial_days = trial_days

    def trial_end_for(self, started_at: datetime) -> datetime:
        return ensure_utc(started_at) + timedelta(days=self.trial_days)

    @staticmethod
    def has_trial_ended(record: SubscriptionRecord, now: datetime) -> bool:
        return ensure_utc(now) >= ensure_utc(record.trial_end_date)

    def is_trial_active(self, record: SubscriptionRecord, now: datetime) -> bool:
        """
        A trial is active only while the record is still in the trial state
        and the clock is strictly before trial_end_date.
        """
        if record.status != SubscriptionStatus.TRIAL:
            return False
        return not self.has_trial_ended(record, now)

    def days_remaining(self, record: SubscriptionRecord, now: datetime) -> int:
        """Whole days left in an active trial, rounded up; 0 otherwise."""
        if not self.is_trial_active(record, now):
            return 0
        remaining = ensure_utc(record.trial_end_date) - ensure_utc(now)
        return max(0, math.ceil(remaining.total_seconds() / SECONDS_PER_DAY))
