"""
Plan Catalog - static registry of plans, prices, trial lengths and features
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from config.settings import PLAN_BASIC, PLAN_FREE, PLAN_PRO

UNLIMITED = -1


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    price: Decimal
    currency: str = "USD"
    trial_days: int = 0
    assignment_limit: int = UNLIMITED
    has_calendar_access: bool = False
    features: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_unlimited(self) -> bool:
        return self.assignment_limit == UNLIMITED


DEFAULT_PLANS = (
    Plan(
        id=PLAN_FREE,
        name="Free Plan",
        price=Decimal("0.00"),
        trial_days=0,
        assignment_limit=4,
        has_calendar_access=False,
        features=(
            "4 assignments per month",
            "AI-powered content creation",
            "Basic formatting options",
            "Email support",
        ),
    ),
    Plan(
        id=PLAN_BASIC,
        name="Basic Plan",
        price=Decimal("14.99"),
        trial_days=14,
        assignment_limit=UNLIMITED,
        has_calendar_access=True,
        features=(
            "Unlimited assignments",
            "Full calendar access",
            "Priority AI processing",
            "PDF & DOCX export",
            "Priority email/chat support",
            "Version history",
            "Collaboration tools",
            "Custom templates",
            "Basic usage analytics",
        ),
    ),
    Plan(
        id=PLAN_PRO,
        name="Pro Plan",
        price=Decimal("29.99"),
        trial_days=14,
        assignment_limit=UNLIMITED,
        has_calendar_access=True,
        features=(
            "Everything in Basic Plan, PLUS:",
            "AI-powered charts and graphs",
            "Advanced export (PDF, DOCX, TXT + more)",
            "University-level academic standards",
            "Plagiarism-free guarantee",
            "24/7 premium support",
            "Advanced performance analytics",
            "Highest priority AI processing",
        ),
    ),
)

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}


class PlanCatalog:
    """Read-only lookup over a fixed set of plans."""

    def __init__(self, plans: Iterable[Plan] = DEFAULT_PLANS):
        self._plans: Dict[str, Plan] = {plan.id: plan for plan in plans}

    def get_plans(self) -> List[Plan]:
        return list(self._plans.values())

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self._plans.get(plan_id)

    def require_plan(self, plan_id: str) -> Plan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise KeyError(f"Unknown plan: {plan_id}")
        return plan

    def get_features(self, plan_id: str) -> List[str]:
        plan = self._plans.get(plan_id)
        return list(plan.features) if plan else []

    @staticmethod
    def format_price(price: Decimal, currency: str = "USD") -> str:
        """Format a price for display, e.g. Decimal('29.99') -> '$29.99'."""
        amount = f"{Decimal(price):,.2f}"
        symbol = CURRENCY_SYMBOLS.get(currency.upper())
        if symbol:
            return f"{symbol}{amount}"
        return f"{amount} {currency.upper()}"
