"""API schemas for checkout endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..checkout import (
    CheckoutMode,
    CheckoutSession,
    ConfirmationState,
    Notification,
    NotificationSeverity,
    PaymentGateway,
    PaymentMethod,
    PaymentResult,
    PurchasableItem,
)
from ..checkout.selector import installment_options


class InstallmentOption(BaseModel):
    count: int
    amount: Decimal
    label: str


class ItemSummary(BaseModel):
    kind: str
    id: int
    name: str
    description: str = ""
    price: Decimal
    formatted_price: str = Field(alias="formattedPrice")
    billing_cycle_label: str = Field(alias="billingCycleLabel")
    features: List[str] = Field(default_factory=list)
    installment_options: List[InstallmentOption] = Field(alias="installmentOptions", default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_item(cls, item: PurchasableItem) -> "ItemSummary":
        return cls(
            kind=item.kind.value,
            id=item.id,
            name=item.name,
            description=item.description,
            price=item.price,
            formatted_price=item.formatted_price,
            billing_cycle_label=item.billing_cycle_label,
            features=list(item.features),
            installment_options=[InstallmentOption(**option) for option in installment_options(item.price)],
        )


class NotificationView(BaseModel):
    title: str
    description: str
    severity: NotificationSeverity
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationView":
        return cls(
            title=notification.title,
            description=notification.description,
            severity=notification.severity,
            created_at=notification.created_at,
        )


class PaymentMethodView(BaseModel):
    method: PaymentMethod
    active_panel: str = Field(alias="activePanel")
    installments: int
    masked_card_number: Optional[str] = Field(alias="maskedCardNumber", default=None)
    card_errors: Dict[str, str] = Field(alias="cardErrors", default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionView(BaseModel):
    id: str
    state: ConfirmationState
    gateway: PaymentGateway
    mode: CheckoutMode
    return_url: str = Field(alias="returnUrl")
    item: Optional[ItemSummary] = None
    client_secret: Optional[str] = Field(alias="clientSecret", default=None)
    error: Optional[str] = None
    payment_method: PaymentMethodView = Field(alias="paymentMethod")
    last_result: Optional[PaymentResult] = Field(alias="lastResult", default=None)
    redirect_to: Optional[str] = Field(alias="redirectTo", default=None)
    notifications: List[NotificationView] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_session(cls, session: CheckoutSession) -> "CheckoutSessionView":
        selector = session.selector
        return cls(
            id=session.session_id,
            state=session.state,
            gateway=session.gateway,
            mode=session.params.mode,
            return_url=session.params.return_url,
            item=ItemSummary.from_item(session.item) if session.item is not None else None,
            client_secret=session.intent.client_secret if session.intent is not None else None,
            error=session.error,
            payment_method=PaymentMethodView(
                method=selector.method,
                active_panel=selector.active_panel,
                installments=selector.installments,
                masked_card_number=selector.masked_card_number,
                card_errors=selector.errors,
            ),
            last_result=session.last_result,
            redirect_to=session.redirect_to,
            notifications=[
                NotificationView.from_notification(item) for item in session.notifications.notifications
            ],
        )


class PaymentMethodRequest(BaseModel):
    method: PaymentMethod
    holder_name: Optional[str] = Field(alias="holderName", default=None)
    card_number: Optional[str] = Field(alias="cardNumber", default=None)
    expiry: Optional[str] = None
    cvc: Optional[str] = None
    installments: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)

    def card_fields(self) -> Dict[str, Optional[str]]:
        return {
            "holder_name": self.holder_name,
            "card_number": self.card_number,
            "expiry": self.expiry,
            "cvc": self.cvc,
        }
