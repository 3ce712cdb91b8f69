from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class SubscriptionRecord(BaseModel):
    """Persisted subscription row, one per user."""
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    trial_end_date: datetime
    upgraded_at: Optional[datetime] = None
    created_at: datetime


class SubscriptionStatusView(BaseModel):
    """Status as seen by callers, recomputed from the clock on every read."""
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    trial_end_date: datetime
    upgraded_at: Optional[datetime] = None
    is_trial_active: bool
    requires_payment_method: bool
    trial_days_remaining: int = 0
    has_paid_access: bool = False
    has_calendar_access: bool = False
    assignment_limit: int = 0


class PaymentMethod(BaseModel):
    """Tokenized payment method; raw card details never reach the backend."""
    payment_method_id: str = Field(min_length=1)
    billing_email: Optional[str] = None
    name_on_card: Optional[str] = None


class ChargeResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    demo: bool = False


class UpgradeResult(BaseModel):
    success: bool
    message: str


class UsageSummary(BaseModel):
    used: int
    limit: int  # -1 means unlimited
    remaining: int  # -1 when unlimited
