"""Processor webhooks keeping the organizations' subscriptions in sync."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from .exceptions import WebhookSignatureError
from .models import SubscriptionEvent, SubscriptionEventType

logger = logging.getLogger("checkout.webhooks")

SIGNATURE_TOLERANCE_SECONDS = 300


def _parse_signature_header(header: str) -> Tuple[Optional[int], Tuple[str, ...]]:
    timestamp: Optional[int] = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, tuple(signatures)


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    *,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> None:
    """Check a ``Stripe-Signature`` header, raising :class:`WebhookSignatureError`."""

    if not header:
        raise WebhookSignatureError("Missing webhook signature header")
    timestamp, signatures = _parse_signature_header(header)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed webhook signature header")

    current = time.time() if now is None else now
    if tolerance and abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("Webhook timestamp outside the tolerance window")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Webhook signature does not match")


def _to_datetime(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period(subscription: Mapping[str, Any], key: str) -> Optional[datetime]:
    if subscription.get(key) is not None:
        return _to_datetime(subscription.get(key))
    # newer API versions report the period on the subscription items
    items = (subscription.get("items") or {}).get("data") or []
    if items and isinstance(items[0], Mapping):
        return _to_datetime(items[0].get(key))
    return None


def parse_event(payload: Mapping[str, Any]) -> Optional[SubscriptionEvent]:
    """Normalize a processor event; returns ``None`` for types we ignore."""

    event_type = payload.get("type")
    try:
        kind = SubscriptionEventType(event_type)
    except ValueError:
        return None

    subscription = (payload.get("data") or {}).get("object")
    if not isinstance(subscription, Mapping):
        raise ValueError("subscription payload missing from webhook event")
    event_id = payload.get("id")
    if not event_id:
        raise ValueError("webhook event has no id")

    metadata = subscription.get("metadata") or {}
    return SubscriptionEvent(
        event_id=str(event_id),
        event_type=kind,
        subscription_id=str(subscription.get("id") or ""),
        status=str(subscription.get("status") or ""),
        metadata={str(key): str(value) for key, value in metadata.items()},
        current_period_start=_period(subscription, "current_period_start"),
        current_period_end=_period(subscription, "current_period_end"),
    )


def load_payload(body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValueError("Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValueError("Webhook body must be a JSON object")
    return payload


class SubscriptionStore(Protocol):
    """Persistence needed to apply subscription events."""

    def record_webhook_event(self, event: SubscriptionEvent, payload: Mapping[str, Any]) -> bool:
        ...

    def update_organization_subscription(
        self,
        organization_id: int,
        *,
        status: str,
        plan_id: Optional[int] = None,
        subscription_id: Optional[str] = None,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
    ) -> bool:
        ...


def _metadata_int(metadata: Mapping[str, str], key: str) -> Optional[int]:
    value = metadata.get(key)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class SubscriptionWebhookProcessor:
    """Applies subscription lifecycle events to the owning organization."""

    def __init__(self, store: SubscriptionStore) -> None:
        self.store = store

    def handle(self, event: SubscriptionEvent, payload: Mapping[str, Any]) -> bool:
        """Return ``True`` when the event changed an organization."""

        if not self.store.record_webhook_event(event, payload):
            logger.info("Skipping duplicate webhook event %s", event.event_id)
            return False

        organization_id = _metadata_int(event.metadata, "organizationId")
        if event.event_type == SubscriptionEventType.DELETED:
            if organization_id is None:
                logger.warning("Subscription %s deleted without organizationId metadata", event.subscription_id)
                return False
            applied = self.store.update_organization_subscription(organization_id, status="canceled")
        else:
            plan_id = _metadata_int(event.metadata, "planId")
            if organization_id is None or plan_id is None:
                logger.warning("Incomplete metadata on subscription event %s", event.subscription_id)
                return False
            applied = self.store.update_organization_subscription(
                organization_id,
                status=event.status,
                plan_id=plan_id,
                subscription_id=event.subscription_id,
                current_period_start=event.current_period_start,
                current_period_end=event.current_period_end,
            )

        if applied:
            logger.info(
                "Applied %s to org=%s subscription=%s status=%s",
                event.event_type.value,
                organization_id,
                event.subscription_id,
                event.status,
            )
        else:
            logger.warning("Organization %s not found for subscription %s", organization_id, event.subscription_id)
        return applied


__all__ = [
    "SubscriptionStore",
    "SubscriptionWebhookProcessor",
    "compute_signature",
    "load_payload",
    "parse_event",
    "verify_signature",
]
