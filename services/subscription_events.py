"""
Subscription change notifications.

Listeners are called synchronously, once per committed transition, in the
order they subscribed, before the call that caused the transition returns.
There is no queue and no retry; a listener that wants fresh state re-reads it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict

from models.subscription import SubscriptionStatus
from utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    UPGRADED = "upgraded"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SubscriptionChangeEvent:
    user_id: str
    kind: ChangeKind
    status: SubscriptionStatus
    occurred_at: datetime = field(default_factory=utc_now)


Listener = Callable[[SubscriptionChangeEvent], None]


class SubscriptionEventBus:

    def __init__(self):
        # dict keeps insertion order and drops duplicate registrations
        self._listeners: Dict[Listener, None] = {}

    def subscribe(self, listener: Listener) -> None:
        self._listeners.setdefault(listener, None)

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners.pop(listener, None)

    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, event: SubscriptionChangeEvent) -> None:
        # Snapshot so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Subscription listener {listener!r} failed for {event.kind.value}: {e}", exc_info=True)
