"""Opens the payment intent that every checkout starts from."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .cancellation import CancellationScope
from .collaborators import CatalogCollaborator, NotificationSink, PaymentCollaborator
from .exceptions import CheckoutCancelled, IntentCreationError
from .models import (
    CheckoutMode,
    CheckoutParams,
    InitiationResult,
    ItemKind,
    NotificationSeverity,
    PaymentGateway,
    PaymentIntent,
    PurchasableItem,
    is_well_formed_client_secret,
)

logger = logging.getLogger("checkout.initiator")

GENERIC_INTENT_ERROR = "Could not start the payment. Please try again."


@dataclass
class IntentInitiator:
    """Looks up the item and asks the processor for a client secret."""

    catalog: CatalogCollaborator
    payment: PaymentCollaborator
    notifier: NotificationSink
    gateway: PaymentGateway = PaymentGateway.STRIPE

    async def initiate(self, params: CheckoutParams, *, scope: CancellationScope) -> InitiationResult:
        """Return an intent or the reason it could not be created; never both."""

        item: Optional[PurchasableItem] = None
        try:
            kind, item_id, organization_id = _validate_params(params)
            try:
                item = await scope.run(self.catalog.get_purchasable_item(kind, item_id))
            except LookupError as exc:
                raise IntentCreationError(f"{kind.value.capitalize()} {item_id} was not found") from exc

            client_secret = await scope.run(
                self.payment.create_intent(item, organization_id=organization_id, mode=params.mode)
            )
            if not is_well_formed_client_secret(client_secret):
                raise IntentCreationError("The payment processor returned an invalid payment token")

            intent = PaymentIntent(
                client_secret=client_secret,
                item=item,
                organization_id=organization_id,
                mode=params.mode,
                gateway=self.gateway,
            )
            await scope.run(self.catalog.record_payment_intent(intent))
        except CheckoutCancelled:
            raise
        except Exception as exc:
            message = _error_message(exc)
            logger.warning(
                "Payment intent creation failed type=%s item=%s org=%s: %s",
                params.item_kind,
                params.item_id,
                params.organization_id,
                message,
            )
            self.notifier.show("Processing error", message, NotificationSeverity.ERROR)
            return InitiationResult(item=item, error=message)

        logger.info(
            "Payment intent %s created for %s %s (mode=%s gateway=%s)",
            intent.intent_id,
            item.kind.value,
            item.id,
            intent.mode.value,
            intent.gateway.value,
        )
        return InitiationResult(item=item, intent=intent)


def _validate_params(params: CheckoutParams) -> tuple[ItemKind, int, Optional[int]]:
    try:
        kind = ItemKind(params.item_kind)
    except ValueError as exc:
        raise IntentCreationError(f"Unknown item type {params.item_kind!r}") from exc

    if params.item_id <= 0:
        raise IntentCreationError("itemId must be a positive integer")

    organization_id = params.organization_id
    if kind == ItemKind.MODULE and organization_id is None:
        raise IntentCreationError("organizationId is required to buy a module")
    if organization_id is not None and organization_id <= 0:
        raise IntentCreationError("organizationId must be a positive integer")
    if kind == ItemKind.PLAN and params.mode == CheckoutMode.SUBSCRIPTION and organization_id is None:
        raise IntentCreationError("organizationId is required for a plan subscription")
    return kind, params.item_id, organization_id


def _error_message(exc: Exception) -> str:
    if isinstance(exc, IntentCreationError):
        return exc.message
    text = str(exc).strip()
    return text or GENERIC_INTENT_ERROR


__all__ = ["GENERIC_INTENT_ERROR", "IntentInitiator"]
