"""
Entitlement Service - subscription state machine and capability checks
"""

import logging
from datetime import datetime
from typing import Optional

from config.settings import PLAN_FREE, PLAN_PRO
from crud.subscription import StoreUnavailableError, SubscriptionStore
from models.subscription import (
    PaymentMethod,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionStatusView,
    UpgradeResult,
    UsageSummary,
)
from services.payment_gateway import PaymentGateway
from services.plan_catalog import UNLIMITED, PlanCatalog
from services.subscription_events import (
    ChangeKind,
    Listener,
    SubscriptionChangeEvent,
    SubscriptionEventBus,
)
from services.trial_service import TrialService
from services.usage_service import UsageCounter
from utils.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED_STATUSES = frozenset({SubscriptionStatus.EXPIRED, SubscriptionStatus.ACTIVE})


class EntitlementService:
    """
    Decides, per user, whether they are in trial, active, cancelled or
    expired, and answers capability questions from that.

    Status is recomputed from the clock on every read: a trial whose end
    date has passed is written back as expired before the read returns.
    Reads never move a record back into trial.

    The two capability checks deliberately disagree when the store cannot
    be reached: assignment creation fails open, calendar access fails closed.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        gateway: PaymentGateway,
        events: SubscriptionEventBus,
        usage: UsageCounter,
        catalog: PlanCatalog,
        plan_id: str = PLAN_PRO,
        clock: Clock = utc_now,
    ):
        """
        Initialize the entitlement service.

        Args:
            store: Subscription record store (SQL or in-memory)
            gateway: Payment gateway used for upgrades
            events: Bus notified after every committed upgrade or cancellation
            usage: Assignment usage counter
            catalog: Plan catalog
            plan_id: Plan new users trial and upgrade to
            clock: Source of "now"; injectable for tests
        """
        self.store = store
        self.gateway = gateway
        self.events = events
        self.usage = usage
        self.catalog = catalog
        self.plan = catalog.require_plan(plan_id)
        self.free_plan = catalog.get_plan(PLAN_FREE)
        self.clock = clock
        self.trials = TrialService(self.plan.trial_days)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def check_subscription_status(self, user_id: str) -> Optional[SubscriptionStatusView]:
        """
        Return the derived subscription status for a user, creating a trial
        on first sight and expiring a finished trial.

        Returns:
            The status view, or None if the store could not be read or the
            new trial could not be written
        """
        now = self.clock()
        try:
            record = await self.store.get(user_id)
        except StoreUnavailableError:
            logger.warning(f"Subscription store unavailable, no status for user {user_id}")
            return None

        if record is None:
            record = await self._start_trial(user_id, now)
            if record is None:
                return None
        elif record.status == SubscriptionStatus.TRIAL and self.trials.has_trial_ended(record, now):
            record = await self._expire_trial(record)

        return self._build_view(record, now)

    async def _start_trial(self, user_id: str, now: datetime) -> Optional[SubscriptionRecord]:
        """
        Create the trial record unless another writer got there first, then
        return whatever row the store now holds.
        """
        trial = SubscriptionRecord(
            user_id=user_id,
            plan_id=self.plan.id,
            status=SubscriptionStatus.TRIAL,
            trial_end_date=self.trials.trial_end_for(now),
            upgraded_at=None,
            created_at=now,
        )
        if not await self.store.insert_if_absent(trial):
            logger.error(f"Could not create trial subscription for user {user_id}")
            return None

        try:
            record = await self.store.get(user_id)
        except StoreUnavailableError:
            logger.warning(f"Subscription store unavailable after creating trial for user {user_id}")
            return None
        if record is None:
            logger.error(f"Trial subscription for user {user_id} missing after insert")
            return None

        if record.created_at == trial.created_at and record.status == SubscriptionStatus.TRIAL:
            logger.info(f"Started {self.plan.trial_days}-day trial for user {user_id}")
        return record

    async def _expire_trial(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """
        Persist trial expiry only if the row is still in trial. A concurrent
        upgrade or cancel wins over the expiry.
        """
        user_id = record.user_id
        expired = record.model_copy(update={"status": SubscriptionStatus.EXPIRED})
        if await self.store.update_status(
            user_id, SubscriptionStatus.EXPIRED, expected_status=SubscriptionStatus.TRIAL
        ):
            logger.info(f"Trial expired for user {user_id}")
            return expired

        try:
            current = await self.store.get(user_id)
        except StoreUnavailableError:
            current = None
        if current is not None and current.status != SubscriptionStatus.TRIAL:
            logger.info(f"Subscription for user {user_id} changed to {current.status.value} before expiry was written")
            return current

        # Next read retries the write; the view is already expired
        logger.warning(f"Could not persist trial expiry for user {user_id}")
        return expired

    def _build_view(self, record: SubscriptionRecord, now: datetime) -> SubscriptionStatusView:
        plan = self.catalog.get_plan(record.plan_id) or self.plan
        is_trial_active = self.trials.is_trial_active(record, now)

        has_paid_access = record.status == SubscriptionStatus.ACTIVE and record.upgraded_at is not None
        if record.status == SubscriptionStatus.ACTIVE and record.upgraded_at is None:
            logger.warning(
                f"Inconsistent subscription for user {record.user_id}: active without upgraded_at; "
                "denying paid entitlements"
            )

        if has_paid_access or is_trial_active:
            assignment_limit = plan.assignment_limit
        else:
            assignment_limit = self._free_limit()

        return SubscriptionStatusView(
            user_id=record.user_id,
            plan_id=record.plan_id,
            status=record.status,
            trial_end_date=record.trial_end_date,
            upgraded_at=record.upgraded_at,
            is_trial_active=is_trial_active,
            requires_payment_method=record.status in PAYMENT_REQUIRED_STATUSES,
            trial_days_remaining=self.trials.days_remaining(record, now),
            has_paid_access=has_paid_access,
            has_calendar_access=has_paid_access and plan.has_calendar_access,
            assignment_limit=assignment_limit,
        )

    def _free_limit(self) -> int:
        return self.free_plan.assignment_limit if self.free_plan else 0

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def convert_trial_to_paid(self, user_id: str, payment_method: PaymentMethod) -> UpgradeResult:
        """
        Charge the subscription plan and mark the user active.

        Already-active users are not charged again. The write is an upsert,
        so it succeeds whether or not a record existed before.

        Args:
            user_id: User to upgrade
            payment_method: Tokenized payment method

        Returns:
            UpgradeResult with a user-facing message
        """
        plan = self.plan
        try:
            try:
                existing = await self.store.get(user_id)
            except StoreUnavailableError:
                logger.warning(f"Could not read subscription before upgrading user {user_id}")
                existing = None

            if existing and existing.status == SubscriptionStatus.ACTIVE and existing.upgraded_at is not None:
                logger.info(f"User {user_id} is already active, skipping charge")
                return UpgradeResult(success=True, message=f"Already subscribed to {plan.name}")

            logger.info(f"Starting upgrade for user {user_id} to plan {plan.id}")
            charge = await self.gateway.charge(
                user_id,
                payment_method,
                plan.price,
                currency=plan.currency,
                description=f"{plan.name} Subscription",
            )
            if not charge.success:
                return UpgradeResult(success=False, message=charge.error or "Payment failed. Please try again.")

            now = self.clock()
            record = SubscriptionRecord(
                user_id=user_id,
                plan_id=plan.id,
                status=SubscriptionStatus.ACTIVE,
                # Only used if no row exists yet; the store never overwrites these
                trial_end_date=existing.trial_end_date if existing else self.trials.trial_end_for(now),
                created_at=existing.created_at if existing else now,
                upgraded_at=now,
            )
            if not await self.store.upsert(record):
                logger.error(f"Payment {charge.transaction_id} succeeded but subscription update failed for user {user_id}")
                return UpgradeResult(
                    success=False,
                    message="Payment successful but failed to update subscription status",
                )

            logger.info(f"User {user_id} upgraded to {plan.id} (transaction {charge.transaction_id})")
            self.events.publish(SubscriptionChangeEvent(
                user_id=user_id,
                kind=ChangeKind.UPGRADED,
                status=SubscriptionStatus.ACTIVE,
                occurred_at=now,
            ))

            suffix = " (demo mode)" if charge.demo else ""
            return UpgradeResult(success=True, message=f"Successfully upgraded to {plan.name}{suffix}")
        except Exception as e:
            logger.error(f"Unexpected error upgrading user {user_id}: {e}", exc_info=True)
            return UpgradeResult(success=False, message="Upgrade failed. Please try again.")

    async def cancel_subscription(self, user_id: str) -> bool:
        """
        Mark a subscription cancelled. No refund or proration.

        Returns:
            True if the status was written, False if there was no record
            or the store failed
        """
        if not await self.store.update_status(user_id, SubscriptionStatus.CANCELLED):
            logger.warning(f"Could not cancel subscription for user {user_id}")
            return False

        logger.info(f"Subscription cancelled for user {user_id}")
        self.events.publish(SubscriptionChangeEvent(
            user_id=user_id,
            kind=ChangeKind.CANCELLED,
            status=SubscriptionStatus.CANCELLED,
            occurred_at=self.clock(),
        ))
        return True

    # ------------------------------------------------------------------
    # Capability checks
    # ------------------------------------------------------------------

    async def can_create_assignment(self, user_id: Optional[str] = None) -> bool:
        """Fails open: if status cannot be determined, creation is allowed."""
        if not user_id:
            return True
        try:
            view = await self.check_subscription_status(user_id)
            if view is None:
                return True
            if not (view.has_paid_access or view.is_trial_active):
                return False
            if view.assignment_limit == UNLIMITED:
                return True
            usage = await self.usage.get_usage(user_id, view.assignment_limit)
            return usage.used < usage.limit
        except Exception as e:
            logger.error(f"Error checking assignment permission for user {user_id}: {e}")
            return True

    async def can_access_calendar(self, user_id: Optional[str] = None) -> bool:
        """Fails closed: only a verified paid subscription unlocks the calendar."""
        if not user_id:
            return False
        try:
            view = await self.check_subscription_status(user_id)
            if view is None:
                return False
            return view.has_calendar_access
        except Exception as e:
            logger.error(f"Error checking calendar access for user {user_id}: {e}")
            return False

    async def get_trial_days_remaining(self, user_id: str) -> int:
        view = await self.check_subscription_status(user_id)
        return view.trial_days_remaining if view else 0

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def record_assignment_created(self, user_id: str) -> bool:
        return await self.usage.increment(user_id) is not None

    async def get_assignment_usage(self, user_id: str) -> UsageSummary:
        free_limit = self._free_limit()
        view = await self.check_subscription_status(user_id)
        limit = view.assignment_limit if view else free_limit
        try:
            return await self.usage.get_usage(user_id, limit)
        except StoreUnavailableError:
            return UsageSummary(used=0, limit=free_limit, remaining=free_limit)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_subscription_change_listener(self, listener: Listener) -> None:
        self.events.subscribe(listener)

    def remove_subscription_change_listener(self, listener: Listener) -> None:
        self.events.unsubscribe(listener)
