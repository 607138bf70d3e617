"""Interfaces of the systems the checkout workflow talks to."""
from __future__ import annotations

from typing import Optional, Protocol

from .models import (
    BillingDetails,
    CheckoutMode,
    ConfirmationResponse,
    ItemKind,
    NotificationSeverity,
    PaymentIntent,
    PaymentMethodData,
    PurchasableItem,
)


class PaymentCollaborator(Protocol):
    """External payment processor integration."""

    async def create_intent(
        self,
        item: PurchasableItem,
        *,
        organization_id: Optional[int],
        mode: CheckoutMode,
    ) -> str:
        """Open a payment intent for ``item`` and return its client secret."""

    async def confirm_payment(self, client_secret: str, data: PaymentMethodData) -> ConfirmationResponse:
        """Submit card details for an intent."""

    async def generate_instant_transfer_payload(self, item_id: int, *, client_secret: str) -> str:
        """Return the Pix QR payload for the intent."""

    async def generate_bank_slip_payload(self, item_id: int, *, client_secret: str) -> str:
        """Return the boleto barcode for the intent."""


class CatalogCollaborator(Protocol):
    """Owning system holding the catalog and the organizations' subscriptions."""

    async def get_purchasable_item(self, kind: ItemKind, item_id: int) -> PurchasableItem:
        """Return the item or raise ``LookupError``."""

    async def record_payment_intent(self, intent: PaymentIntent) -> None:
        ...

    async def confirm_plan_payment(self, transaction_id: str, organization_id: Optional[int]) -> None:
        ...

    async def confirm_module_payment(self, transaction_id: str) -> None:
        ...


class BillingDetailsSource(Protocol):
    """Looks up the billing identity of an organization."""

    async def get_billing_details(self, organization_id: int) -> Optional[BillingDetails]:
        """Return ``None`` when the organization has not filled it in."""


class NotificationSink(Protocol):
    """Dispatches toasts to the buyer."""

    def show(self, title: str, description: str, severity: NotificationSeverity) -> None:
        ...


__all__ = ["BillingDetailsSource", "CatalogCollaborator", "NotificationSink", "PaymentCollaborator"]
