"""Tests for the checkout domain models."""
from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import TypeAdapter, ValidationError

from backend.app.checkout import (
    BillingCycle,
    CardPaymentData,
    InitiationResult,
    ItemKind,
    PaymentFailed,
    PaymentIntent,
    PaymentMethodData,
    PaymentRequiresAction,
    PaymentResult,
    PixPaymentData,
    PurchasableItem,
)
from backend.app.checkout.models import format_price, is_well_formed_client_secret
from backend.tests.checkout_fakes import make_module, make_plan


def test_format_price_uses_brazilian_separators():
    assert format_price(Decimal("1234.5")) == "R$ 1.234,50"
    assert format_price(Decimal("0")) == "R$ 0,00"
    assert format_price(Decimal("99.999")) == "R$ 100,00"


def test_billing_cycle_label_defaults_to_monthly():
    assert make_plan().billing_cycle_label == "Monthly"
    assert make_module(cycle=None).billing_cycle_label == "Monthly"
    assert make_module(cycle=BillingCycle.YEARLY).billing_cycle_label == "Yearly"


def test_plan_cannot_carry_billing_cycle():
    with pytest.raises(ValidationError):
        PurchasableItem(
            kind=ItemKind.PLAN,
            id=1,
            name="Basic",
            price=Decimal("10"),
            billing_cycle=BillingCycle.MONTHLY,
        )


def test_item_rejects_negative_price_and_non_positive_id():
    with pytest.raises(ValidationError):
        PurchasableItem(kind=ItemKind.PLAN, id=1, name="Basic", price=Decimal("-1"))
    with pytest.raises(ValidationError):
        PurchasableItem(kind=ItemKind.PLAN, id=0, name="Basic", price=Decimal("1"))


def test_amount_in_cents_rounds_half_up():
    assert make_plan(price="199.905").amount_in_cents == 19991


def test_intent_id_is_secret_prefix():
    intent = PaymentIntent(client_secret="pi_3Abc_secret_xyz", item=make_plan())
    assert intent.intent_id == "pi_3Abc"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("pi_123_secret_456", True),
        ("seti_123", True),
        ("abc_secret_def", True),
        ("", False),
        ("not-a-secret", False),
        (None, False),
    ],
)
def test_client_secret_shape(value, expected):
    assert is_well_formed_client_secret(value) is expected


def test_initiation_result_holds_exactly_one_outcome():
    intent = PaymentIntent(client_secret="pi_1_secret_2", item=make_plan())
    assert InitiationResult(intent=intent).ok
    assert not InitiationResult(error="boom").ok
    with pytest.raises(ValidationError):
        InitiationResult()
    with pytest.raises(ValidationError):
        InitiationResult(intent=intent, error="boom")
    with pytest.raises(ValidationError):
        InitiationResult(error="   ")


def test_card_data_repr_hides_card_number():
    card = CardPaymentData(
        holder_name="Ana Souza",
        card_number="4242 4242 4242 4242",
        expiry="12/30",
        cvc="123",
    )
    text = repr(card)
    assert "4242 4242" not in text
    assert "123" not in text
    assert card.last_four == "4242"


def test_card_installments_are_restricted():
    with pytest.raises(ValidationError):
        CardPaymentData(holder_name="A", card_number="1", expiry="1", cvc="1", installments=2)


def test_payment_method_data_is_discriminated_by_method():
    adapter = TypeAdapter(PaymentMethodData)
    assert isinstance(adapter.validate_python({"method": "pix"}), PixPaymentData)
    with pytest.raises(ValidationError):
        adapter.validate_python({"method": "cash"})


def test_payment_result_is_discriminated_by_status():
    adapter = TypeAdapter(PaymentResult)
    result = adapter.validate_python({"status": "requires_action", "action": "display_qr", "payload": "x"})
    assert isinstance(result, PaymentRequiresAction)
    assert isinstance(adapter.validate_python({"status": "failed", "message": "nope"}), PaymentFailed)
    with pytest.raises(ValidationError):
        PaymentFailed(message="")
