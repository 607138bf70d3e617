"""Application wiring for the checkout workflow."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Dict, Optional

from ..checkout import (
    BillingDetailsSource,
    CheckoutParams,
    CheckoutSession,
    CheckoutSessionFactory,
    InMemoryCheckoutSessionStore,
    PaymentCollaborator,
    PaymentGateway,
)
from ..checkout.config import CheckoutConfig, load_checkout_config
from ..checkout.providers import SandboxPaymentCollaborator, StripePaymentCollaborator
from ..checkout.repository import PostgresCatalogRepository
from ..checkout.webhooks import (
    SubscriptionWebhookProcessor,
    load_payload,
    parse_event,
    verify_signature,
)

logger = logging.getLogger("checkout")


@dataclass
class CheckoutService:
    """Entry point used by the HTTP routes."""

    config: CheckoutConfig
    factory: CheckoutSessionFactory
    store: InMemoryCheckoutSessionStore
    webhook_processor: SubscriptionWebhookProcessor

    async def open_session(self, params: CheckoutParams, *, owner_id: Optional[int] = None) -> CheckoutSession:
        session = self.store.add(self.factory.create(params, owner_id=owner_id))
        await session.start()
        return session

    def get_session(self, session_id: str) -> CheckoutSession:
        return self.store.get(session_id)

    def abandon_session(self, session_id: str) -> None:
        session = self.store.get(session_id)
        self.store.discard(session.session_id)

    async def handle_webhook(self, body: bytes, signature: Optional[str]) -> bool:
        if self.config.stripe_webhook_secret:
            verify_signature(body, signature, self.config.stripe_webhook_secret)
        payload = load_payload(body)
        event = parse_event(payload)
        if event is None:
            logger.debug("Ignoring webhook event type %s", payload.get("type"))
            return False
        return await asyncio.to_thread(self.webhook_processor.handle, event, payload)


def build_payment_collaborators(
    config: CheckoutConfig,
    *,
    billing_details: Optional[BillingDetailsSource] = None,
) -> Dict[PaymentGateway, PaymentCollaborator]:
    sandbox = SandboxPaymentCollaborator(
        latency_seconds=config.sandbox_latency_seconds,
        redirect_base_url=f"{config.app_base_url}/sandbox/3ds",
        intent_ttl=timedelta(seconds=config.session_ttl_seconds),
    )
    payments: Dict[PaymentGateway, PaymentCollaborator] = {PaymentGateway.COMPLYPAY: sandbox}
    if config.stripe_enabled:
        payments[PaymentGateway.STRIPE] = StripePaymentCollaborator(
            secret_key=config.stripe_secret_key or "",
            currency=config.currency,
            api_base=config.stripe_api_base,
            return_url=f"{config.app_base_url}/checkout",
            timeout=config.http_timeout_seconds,
            billing_details=billing_details,
        )
    else:
        logger.warning("STRIPE_SECRET_KEY is not set; Stripe checkouts are disabled")
    return payments


def build_checkout_service(
    config: CheckoutConfig,
    *,
    repository: Optional[PostgresCatalogRepository] = None,
    payments: Optional[Dict[PaymentGateway, PaymentCollaborator]] = None,
) -> CheckoutService:
    repository = repository or PostgresCatalogRepository()
    factory = CheckoutSessionFactory(
        catalog=repository,
        payments=(
            payments
            if payments is not None
            else build_payment_collaborators(config, billing_details=repository)
        ),
        default_gateway=config.default_gateway,
        post_payment_url=config.post_payment_url,
    )
    store = InMemoryCheckoutSessionStore(ttl=timedelta(seconds=config.session_ttl_seconds))
    return CheckoutService(
        config=config,
        factory=factory,
        store=store,
        webhook_processor=SubscriptionWebhookProcessor(repository),
    )


@lru_cache(maxsize=1)
def get_checkout_service() -> CheckoutService:
    return build_checkout_service(load_checkout_config())


__all__ = ["CheckoutService", "build_checkout_service", "get_checkout_service"]
