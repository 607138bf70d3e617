"""Tests for payment intent creation."""
from __future__ import annotations

import asyncio

from backend.app.checkout import (
    CancellationScope,
    CheckoutMode,
    CheckoutParams,
    IntentInitiator,
    NotificationSeverity,
    PaymentGateway,
)
from backend.tests.checkout_fakes import CollectingSink, FakeCatalog, RecordingPayment, make_module, make_plan


def _initiate(params: CheckoutParams, catalog: FakeCatalog, payment: RecordingPayment, sink: CollectingSink):
    initiator = IntentInitiator(catalog=catalog, payment=payment, notifier=sink, gateway=PaymentGateway.STRIPE)
    return asyncio.run(initiator.initiate(params, scope=CancellationScope("test")))


def test_plan_checkout_creates_and_records_intent():
    catalog, payment, sink = FakeCatalog(make_plan()), RecordingPayment(), CollectingSink()

    result = _initiate(CheckoutParams(type="plan", itemId=7), catalog, payment, sink)

    assert result.ok
    assert result.error is None
    assert result.intent.client_secret == "pi_123_secret_abc"
    assert result.intent.item.id == 7
    assert result.intent.organization_id is None
    assert payment.count("create_intent") == 1
    assert catalog.recorded == [result.intent]
    assert sink.shown == []


def test_module_without_organization_fails_without_processor_call():
    catalog, payment, sink = FakeCatalog(make_module()), RecordingPayment(), CollectingSink()

    result = _initiate(CheckoutParams(type="module", itemId=3), catalog, payment, sink)

    assert not result.ok
    assert result.intent is None
    assert "organizationId" in result.error
    assert payment.calls == []
    assert sink.shown == [("Processing error", result.error, NotificationSeverity.ERROR)]


def test_module_with_organization_passes_it_to_processor():
    catalog, payment, sink = FakeCatalog(make_module()), RecordingPayment(), CollectingSink()

    result = _initiate(CheckoutParams(type="module", itemId=3, organizationId=42), catalog, payment, sink)

    assert result.ok
    assert payment.calls == [("create_intent", (3, 42, CheckoutMode.ONETIME))]


def test_invalid_parameters_produce_errors():
    catalog, payment, sink = FakeCatalog(make_plan()), RecordingPayment(), CollectingSink()

    for params in (
        CheckoutParams(type="bundle", itemId=7),
        CheckoutParams(type="plan", itemId=0),
        CheckoutParams(type="plan", itemId=7, organizationId=-1),
        CheckoutParams(type="plan", itemId=7, mode=CheckoutMode.SUBSCRIPTION),
    ):
        result = _initiate(params, catalog, payment, sink)
        assert result.intent is None
        assert result.error

    assert payment.calls == []


def test_unknown_item_is_reported():
    catalog, payment, sink = FakeCatalog(), RecordingPayment(), CollectingSink()

    result = _initiate(CheckoutParams(type="plan", itemId=99), catalog, payment, sink)

    assert result.error == "Plan 99 was not found"
    assert result.item is None


def test_processor_failure_becomes_error_result():
    catalog, payment, sink = FakeCatalog(make_plan()), RecordingPayment(), CollectingSink()
    payment.create_error = RuntimeError("Stripe is down")

    result = _initiate(CheckoutParams(type="plan", itemId=7), catalog, payment, sink)

    assert result.error == "Stripe is down"
    assert result.item.id == 7
    assert catalog.recorded == []
    assert sink.titles == ["Processing error"]


def test_malformed_client_secret_is_an_initiation_error():
    catalog, sink = FakeCatalog(make_plan()), CollectingSink()
    payment = RecordingPayment(secret="garbage")

    result = _initiate(CheckoutParams(type="plan", itemId=7), catalog, payment, sink)

    assert result.intent is None
    assert "invalid payment token" in result.error
    assert catalog.recorded == []
