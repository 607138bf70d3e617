"""In-memory collaborators shared by the checkout tests."""
from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from backend.app.checkout import (
    BillingCycle,
    CheckoutMode,
    ConfirmationResponse,
    ConfirmationStatus,
    ItemKind,
    NotificationSeverity,
    PaymentIntent,
    PaymentMethodData,
    PurchasableItem,
    SubscriptionEvent,
)


def make_plan(plan_id: int = 7, price: str = "199.90") -> PurchasableItem:
    return PurchasableItem(
        kind=ItemKind.PLAN,
        id=plan_id,
        name="Professional",
        description="For growing teams",
        price=Decimal(price),
        features=("Unlimited users", "Priority support"),
    )


def make_module(module_id: int = 3, cycle: Optional[BillingCycle] = BillingCycle.YEARLY) -> PurchasableItem:
    return PurchasableItem(
        kind=ItemKind.MODULE,
        id=module_id,
        name="Audit trail",
        price=Decimal("49.00"),
        billing_cycle=cycle,
    )


class FakeCatalog:
    def __init__(self, *items: PurchasableItem) -> None:
        self.items: Dict[Tuple[ItemKind, int], PurchasableItem] = {(item.kind, item.id): item for item in items}
        self.recorded: List[PaymentIntent] = []
        self.plan_confirmations: List[Tuple[str, Optional[int]]] = []
        self.module_confirmations: List[str] = []
        self.confirmation_error: Optional[Exception] = None
        self.webhook_events: Set[str] = set()
        self.organizations: Set[int] = {42}
        self.subscription_updates: List[Dict[str, Any]] = []

    async def get_purchasable_item(self, kind: ItemKind, item_id: int) -> PurchasableItem:
        try:
            return self.items[(kind, item_id)]
        except KeyError:
            raise LookupError(f"{kind.value} {item_id} missing") from None

    async def record_payment_intent(self, intent: PaymentIntent) -> None:
        self.recorded.append(intent)

    async def confirm_plan_payment(self, transaction_id: str, organization_id: Optional[int]) -> None:
        self.plan_confirmations.append((transaction_id, organization_id))
        if self.confirmation_error is not None:
            raise self.confirmation_error

    async def confirm_module_payment(self, transaction_id: str) -> None:
        self.module_confirmations.append(transaction_id)
        if self.confirmation_error is not None:
            raise self.confirmation_error

    def record_webhook_event(self, event: SubscriptionEvent, payload: Mapping[str, Any]) -> bool:
        if event.event_id in self.webhook_events:
            return False
        self.webhook_events.add(event.event_id)
        return True

    def update_organization_subscription(self, organization_id: int, **changes: Any) -> bool:
        self.subscription_updates.append({"organization_id": organization_id, **changes})
        return organization_id in self.organizations


class RecordingPayment:
    def __init__(
        self,
        *,
        secret: str = "pi_123_secret_abc",
        response: Optional[ConfirmationResponse] = None,
    ) -> None:
        self.secret = secret
        self.response = response or ConfirmationResponse(
            status=ConfirmationStatus.SUCCEEDED, transaction_id="pi_123"
        )
        self.pix_payload = "00020126580014br.gov.bcb.pix0136key-1234 *special*6304ABCD"
        self.boleto_payload = "34191790010104351004791020150008187650000019990"
        self.create_error: Optional[Exception] = None
        self.confirm_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[str, Any]] = []

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def create_intent(
        self,
        item: PurchasableItem,
        *,
        organization_id: Optional[int],
        mode: CheckoutMode,
    ) -> str:
        self.calls.append(("create_intent", (item.id, organization_id, mode)))
        if self.create_error is not None:
            raise self.create_error
        return self.secret

    async def confirm_payment(self, client_secret: str, data: PaymentMethodData) -> ConfirmationResponse:
        self.calls.append(("confirm_payment", client_secret))
        await self._wait()
        if self.confirm_error is not None:
            raise self.confirm_error
        return self.response

    async def generate_instant_transfer_payload(self, item_id: int, *, client_secret: str) -> str:
        self.calls.append(("pix", item_id))
        await self._wait()
        return self.pix_payload

    async def generate_bank_slip_payload(self, item_id: int, *, client_secret: str) -> str:
        self.calls.append(("boleto", item_id))
        await self._wait()
        return self.boleto_payload

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


class CollectingSink:
    def __init__(self) -> None:
        self.shown: List[Tuple[str, str, NotificationSeverity]] = []

    def show(self, title: str, description: str, severity: NotificationSeverity) -> None:
        self.shown.append((title, description, severity))

    @property
    def titles(self) -> List[str]:
        return [title for title, _, _ in self.shown]
