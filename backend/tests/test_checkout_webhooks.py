"""Tests for processor subscription webhooks."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from backend.app.checkout import SubscriptionEventType, WebhookSignatureError
from backend.app.checkout.webhooks import (
    SubscriptionWebhookProcessor,
    compute_signature,
    load_payload,
    parse_event,
    verify_signature,
)
from backend.tests.checkout_fakes import FakeCatalog

SECRET = "whsec_test"


def _event(event_type="customer.subscription.updated", event_id="evt_1", metadata=None, **extra):
    subscription = {
        "id": "sub_1",
        "status": "active",
        "metadata": {"organizationId": "42", "planId": "7"} if metadata is None else metadata,
        "current_period_start": 1704067200,
        "current_period_end": 1706745600,
    }
    subscription.update(extra)
    return {"id": event_id, "type": event_type, "data": {"object": subscription}}


def test_valid_signature_is_accepted():
    body = b'{"id": "evt_1"}'
    header = f"t=1700000000,v1={compute_signature(body, SECRET, 1700000000)}"

    verify_signature(body, header, SECRET, now=1700000010)


@pytest.mark.parametrize(
    "header, now",
    [
        (None, 1700000000),
        ("v1=abc", 1700000000),
        ("t=1700000000,v1=deadbeef", 1700000000),
        ("t=1700000000,v1={sig}", 1700009999),
    ],
)
def test_bad_signatures_are_rejected(header, now):
    body = b'{"id": "evt_1"}'
    if header and "{sig}" in header:
        header = header.format(sig=compute_signature(body, SECRET, 1700000000))

    with pytest.raises(WebhookSignatureError):
        verify_signature(body, header, SECRET, now=now)


def test_parse_event_normalizes_subscription():
    event = parse_event(_event())

    assert event.event_type == SubscriptionEventType.UPDATED
    assert event.subscription_id == "sub_1"
    assert event.metadata == {"organizationId": "42", "planId": "7"}
    assert event.current_period_start == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_parse_event_reads_period_from_items():
    payload = _event(current_period_start=None, current_period_end=None)
    payload["data"]["object"]["items"] = {"data": [{"current_period_start": 1704067200, "current_period_end": 1706745600}]}

    event = parse_event(payload)

    assert event.current_period_end == datetime(2024, 2, 1, tzinfo=timezone.utc)


def test_parse_event_ignores_other_types_and_rejects_garbage():
    assert parse_event({"id": "evt", "type": "invoice.paid"}) is None
    with pytest.raises(ValueError):
        parse_event({"id": "evt", "type": "customer.subscription.created"})
    with pytest.raises(ValueError):
        load_payload(b"not json")


def test_processor_updates_organization_once_per_event():
    store = FakeCatalog()
    processor = SubscriptionWebhookProcessor(store)
    payload = _event()

    assert processor.handle(parse_event(payload), payload) is True
    assert processor.handle(parse_event(payload), payload) is False

    assert len(store.subscription_updates) == 1
    update = store.subscription_updates[0]
    assert update["organization_id"] == 42
    assert update["plan_id"] == 7
    assert update["status"] == "active"
    assert update["subscription_id"] == "sub_1"


def test_processor_ignores_incomplete_metadata():
    store = FakeCatalog()
    payload = _event(metadata={"organizationId": "42"})

    assert SubscriptionWebhookProcessor(store).handle(parse_event(payload), payload) is False
    assert store.subscription_updates == []


def test_deleted_subscription_marks_organization_canceled():
    store = FakeCatalog()
    payload = _event("customer.subscription.deleted", metadata={"organizationId": "42"})

    assert SubscriptionWebhookProcessor(store).handle(parse_event(payload), payload) is True
    assert store.subscription_updates == [{"organization_id": 42, "status": "canceled"}]


def test_load_payload_roundtrip():
    assert load_payload(json.dumps(_event()).encode())["id"] == "evt_1"
