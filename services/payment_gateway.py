"""
Payment Gateway - Stripe charges with a deterministic demo path
"""

import asyncio
import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import stripe

from config.settings import PLACEHOLDER_STRIPE_KEYS
from models.subscription import ChargeResult, PaymentMethod

logger = logging.getLogger(__name__)

DEFAULT_DEMO_DELAY_SECONDS = 2.0


def is_stripe_configured(secret_key: Optional[str]) -> bool:
    """Missing, blank and placeholder keys all count as "not configured"."""
    if not secret_key or not secret_key.strip():
        return False
    return secret_key.strip() not in PLACEHOLDER_STRIPE_KEYS


def to_minor_units(amount: Decimal) -> int:
    """Decimal('29.99') -> 2999"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway:
    """
    Thin adapter over the billing provider.

    Without usable credentials every charge goes through the demo path:
    a short fixed wait followed by a success result. Callers treat demo
    and real successes identically.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        demo_delay_seconds: float = DEFAULT_DEMO_DELAY_SECONDS,
    ):
        """
        Initialize the gateway.

        Args:
            secret_key: Stripe secret key; None or a placeholder enables demo mode
            demo_delay_seconds: Simulated processing time for demo charges
        """
        self.secret_key = secret_key
        self.demo_delay_seconds = demo_delay_seconds
        self.demo_mode = not is_stripe_configured(secret_key)
        if self.demo_mode:
            logger.warning("STRIPE_SECRET_KEY is not set. Payments will run in demo mode.")

    async def charge(
        self,
        user_id: str,
        payment_method: PaymentMethod,
        amount: Decimal,
        currency: str = "USD",
        description: Optional[str] = None,
    ) -> ChargeResult:
        """
        Charge a payment method once.

        Args:
            user_id: User being charged (recorded as metadata)
            payment_method: Tokenized payment method
            amount: Amount in major units
            currency: ISO currency code
            description: Statement description

        Returns:
            ChargeResult; business failures are reported, never raised
        """
        if self.demo_mode:
            return await self._demo_charge(user_id, amount, currency)

        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                api_key=self.secret_key,
                amount=to_minor_units(amount),
                currency=currency.lower(),
                payment_method=payment_method.payment_method_id,
                confirm=True,
                description=description,
                receipt_email=payment_method.billing_email,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"user_id": user_id},
            )
        except stripe.CardError as e:
            logger.warning(f"Card declined for user {user_id}: {e.user_message or e}")
            return ChargeResult(success=False, error=e.user_message or "Your card was declined.")
        except stripe.StripeError as e:
            logger.error(f"Stripe charge failed for user {user_id}: {e}", exc_info=True)
            return ChargeResult(success=False, error="Payment processing failed")

        if intent.status != "succeeded":
            logger.warning(f"Payment intent {intent.id} for user {user_id} ended in status {intent.status}")
            return ChargeResult(
                success=False,
                transaction_id=intent.id,
                error=f"Payment not completed (status: {intent.status})",
            )

        logger.info(f"Charged user {user_id} {amount} {currency} (intent {intent.id})")
        return ChargeResult(success=True, transaction_id=intent.id)

    async def _demo_charge(self, user_id: str, amount: Decimal, currency: str) -> ChargeResult:
        logger.info(f"Stripe not configured, simulating {amount} {currency} charge for user {user_id}")
        await asyncio.sleep(self.demo_delay_seconds)
        return ChargeResult(success=True, transaction_id=f"demo_{uuid.uuid4().hex}", demo=True)
