"""
Composition root: builds the subscription services once per process
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import Settings
from crud.subscription import InMemorySubscriptionStore, SqlSubscriptionStore, SubscriptionStore
from crud.usage import InMemoryUsageStore, SqlUsageStore
from database import create_session_factory, init_db, is_database_configured
from services.entitlement_service import EntitlementService
from services.payment_gateway import PaymentGateway
from services.plan_catalog import PlanCatalog
from services.subscription_events import SubscriptionEventBus
from services.usage_service import UsageCounter
from utils.time_utils import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    catalog: PlanCatalog
    store: SubscriptionStore
    usage: UsageCounter
    gateway: PaymentGateway
    events: SubscriptionEventBus
    entitlements: EntitlementService
    engine: Optional[AsyncEngine] = None

    @property
    def uses_database(self) -> bool:
        return self.engine is not None

    async def startup(self):
        if self.engine is not None:
            await init_db(self.engine)

    async def shutdown(self):
        if self.engine is not None:
            await self.engine.dispose()


def build_services(app_settings: Settings, clock: Clock = utc_now) -> ServiceContainer:
    """
    Wire the services for the given settings.

    A missing or placeholder DATABASE_URL selects the in-memory stores;
    a missing or placeholder STRIPE_SECRET_KEY selects demo payments.
    """
    engine = None
    if is_database_configured(app_settings.database_url):
        engine, session_factory = create_session_factory(app_settings.database_url)
        store = SqlSubscriptionStore(session_factory)
        usage_store = SqlUsageStore(session_factory)
        logger.info("Using database-backed subscription store")
    else:
        store = InMemorySubscriptionStore()
        usage_store = InMemoryUsageStore()
        logger.warning("DATABASE_URL is not set. Subscriptions are kept in memory and lost on restart.")

    catalog = PlanCatalog()
    usage = UsageCounter(usage_store, clock=clock)
    gateway = PaymentGateway(
        secret_key=app_settings.stripe_secret_key,
        demo_delay_seconds=app_settings.demo_payment_delay_seconds,
    )
    events = SubscriptionEventBus()
    entitlements = EntitlementService(
        store=store,
        gateway=gateway,
        events=events,
        usage=usage,
        catalog=catalog,
        plan_id=app_settings.subscription_plan_id,
        clock=clock,
    )
    return ServiceContainer(
        catalog=catalog,
        store=store,
        usage=usage,
        gateway=gateway,
        events=events,
        entitlements=entitlements,
        engine=engine,
    )
