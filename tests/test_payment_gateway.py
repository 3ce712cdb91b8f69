"""Tests for the payment gateway adapter (Stripe mocked)."""
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import stripe

from models.subscription import PaymentMethod
from services.payment_gateway import PaymentGateway, is_stripe_configured, to_minor_units

METHOD = PaymentMethod(payment_method_id="pm_card_visa", billing_email="u1@example.com")


@pytest.mark.parametrize("key,expected", [
    (None, False),
    ("", False),
    ("   ", False),
    ("your_stripe_secret_key_here", False),
    ("sk_test_placeholder", False),
    ("sk_test_51Hreal", True),
])
def test_is_stripe_configured(key, expected):
    assert is_stripe_configured(key) is expected


def test_to_minor_units():
    assert to_minor_units(Decimal("29.99")) == 2999
    assert to_minor_units(Decimal("14.995")) == 1500
    assert to_minor_units(Decimal("0")) == 0


@pytest.mark.asyncio
async def test_demo_path_waits_and_succeeds():
    gateway = PaymentGateway(secret_key="your_stripe_secret_key_here", demo_delay_seconds=2.0)
    assert gateway.demo_mode is True

    with patch("services.payment_gateway.asyncio.sleep", new_callable=AsyncMock) as mock_sleep, \
            patch("services.payment_gateway.stripe.PaymentIntent.create") as mock_create:
        result = await gateway.charge("u1", METHOD, Decimal("29.99"))

    mock_sleep.assert_awaited_once_with(2.0)
    mock_create.assert_not_called()
    assert result.success is True
    assert result.demo is True
    assert result.transaction_id.startswith("demo_")


@pytest.mark.asyncio
async def test_configured_charge_succeeds():
    gateway = PaymentGateway(secret_key="sk_test_51Hreal")
    intent = SimpleNamespace(id="pi_123", status="succeeded")

    with patch("services.payment_gateway.stripe.PaymentIntent.create", MagicMock(return_value=intent)) as mock_create:
        result = await gateway.charge("u1", METHOD, Decimal("29.99"), currency="USD", description="Pro Plan Subscription")

    assert result.success is True
    assert result.demo is False
    assert result.transaction_id == "pi_123"
    kwargs = mock_create.call_args.kwargs
    assert kwargs["api_key"] == "sk_test_51Hreal"
    assert kwargs["amount"] == 2999
    assert kwargs["currency"] == "usd"
    assert kwargs["payment_method"] == "pm_card_visa"
    assert kwargs["confirm"] is True
    assert kwargs["metadata"] == {"user_id": "u1"}


@pytest.mark.asyncio
async def test_card_declined():
    gateway = PaymentGateway(secret_key="sk_test_51Hreal")
    error = stripe.CardError("Your card was declined.", None, "card_declined")

    with patch("services.payment_gateway.stripe.PaymentIntent.create", MagicMock(side_effect=error)):
        result = await gateway.charge("u1", METHOD, Decimal("29.99"))

    assert result.success is False
    assert result.error == "Your card was declined."


@pytest.mark.asyncio
async def test_provider_error():
    gateway = PaymentGateway(secret_key="sk_test_51Hreal")
    error = stripe.APIConnectionError("network unreachable")

    with patch("services.payment_gateway.stripe.PaymentIntent.create", MagicMock(side_effect=error)):
        result = await gateway.charge("u1", METHOD, Decimal("29.99"))

    assert result.success is False
    assert result.error == "Payment processing failed"


@pytest.mark.asyncio
async def test_incomplete_intent_is_failure():
    gateway = PaymentGateway(secret_key="sk_test_51Hreal")
    intent = SimpleNamespace(id="pi_456", status="requires_action")

    with patch("services.payment_gateway.stripe.PaymentIntent.create", MagicMock(return_value=intent)):
        result = await gateway.charge("u1", METHOD, Decimal("29.99"))

    assert result.success is False
    assert result.transaction_id == "pi_456"
    assert "requires_action" in result.error


def test_payment_method_requires_token():
    with pytest.raises(ValueError):
        PaymentMethod(payment_method_id="")
