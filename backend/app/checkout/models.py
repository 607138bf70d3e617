"""Domain models for the checkout workflow."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ItemKind(str, Enum):
    """Kinds of purchasable items."""

    PLAN = "plan"
    MODULE = "module"


class BillingCycle(str, Enum):
    """Billing frequency of an add-on module."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class CheckoutMode(str, Enum):
    """Whether the purchase is charged once or as a recurring subscription."""

    ONETIME = "onetime"
    SUBSCRIPTION = "subscription"


class PaymentGateway(str, Enum):
    """Payment processors that can back a checkout."""

    STRIPE = "stripe"
    COMPLYPAY = "complypay"


class PaymentMethod(str, Enum):
    """Mutually exclusive payment paths offered at checkout."""

    CREDIT_CARD = "credit_card"
    PIX = "pix"
    BOLETO = "boleto"


class ConfirmationState(str, Enum):
    """Lifecycle of a confirmation attempt."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"


class NotificationSeverity(str, Enum):
    """Visual weight of a user-facing notification."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


ALLOWED_INSTALLMENTS: Tuple[int, ...] = (1, 3, 6, 12)

_CENT = Decimal("0.01")


def format_price(amount: Decimal) -> str:
    """Render an amount in Brazilian reais, e.g. ``R$ 1.234,56``."""

    quantized = Decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    whole, _, cents = f"{quantized:,.2f}".partition(".")
    return f"R$ {whole.replace(',', '.')},{cents}"


class PurchasableItem(BaseModel):
    """A subscription plan or add-on module offered for purchase."""

    kind: ItemKind
    id: int = Field(gt=0)
    name: str
    description: str = ""
    price: Decimal = Field(ge=0)
    features: Tuple[str, ...] = ()
    billing_cycle: Optional[BillingCycle] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _plans_have_no_cycle(self) -> "PurchasableItem":
        if self.kind == ItemKind.PLAN and self.billing_cycle is not None:
            raise ValueError("billing_cycle applies to modules only")
        return self

    @property
    def billing_cycle_label(self) -> str:
        if self.kind == ItemKind.MODULE and self.billing_cycle == BillingCycle.YEARLY:
            return "Yearly"
        return "Monthly"

    @property
    def formatted_price(self) -> str:
        return format_price(self.price)

    @property
    def amount_in_cents(self) -> int:
        return int((self.price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class BillingDetails(BaseModel):
    """Buyer identification a processor needs before it issues a bank slip."""

    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    tax_id: str = Field(min_length=11)
    line1: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=2)
    postal_code: str = Field(min_length=1)
    country: str = "BR"

    model_config = ConfigDict(frozen=True)


class PaymentIntent(BaseModel):
    """Opaque handle on an in-progress payment held by the processor."""

    client_secret: str = Field(min_length=1)
    item: PurchasableItem
    organization_id: Optional[int] = None
    mode: CheckoutMode = CheckoutMode.ONETIME
    gateway: PaymentGateway = PaymentGateway.STRIPE
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def intent_id(self) -> str:
        """Processor identifier of the intent, derived from the client secret."""

        intent_id, separator, _ = self.client_secret.partition("_secret_")
        return intent_id if separator else self.client_secret


def is_well_formed_client_secret(value: object) -> bool:
    if not isinstance(value, str) or not value:
        return False
    return value.startswith(("pi_", "seti_")) or "_secret_" in value


class CardPaymentData(BaseModel):
    """Card details typed in by the buyer."""

    method: Literal["credit_card"] = "credit_card"
    holder_name: str
    card_number: str
    expiry: str
    cvc: str
    installments: int = 1

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("installments")
    @classmethod
    def _validate_installments(cls, value: int) -> int:
        if value not in ALLOWED_INSTALLMENTS:
            raise ValueError(f"installments must be one of {ALLOWED_INSTALLMENTS}")
        return value

    @property
    def last_four(self) -> str:
        digits = "".join(ch for ch in self.card_number if ch.isdigit())
        return digits[-4:]

    def __repr__(self) -> str:  # card data stays out of logs
        return f"CardPaymentData(last_four={self.last_four!r}, installments={self.installments})"


class PixPaymentData(BaseModel):
    """Instant transfer; the QR code is generated on submission."""

    method: Literal["pix"] = "pix"

    model_config = ConfigDict(frozen=True)


class BoletoPaymentData(BaseModel):
    """Bank slip; the barcode is generated on submission."""

    method: Literal["boleto"] = "boleto"

    model_config = ConfigDict(frozen=True)


PaymentMethodData = Annotated[
    Union[CardPaymentData, PixPaymentData, BoletoPaymentData],
    Field(discriminator="method"),
]


class ConfirmationStatus(str, Enum):
    """Verdicts returned by the processor's confirmation entry point."""

    SUCCEEDED = "succeeded"
    REQUIRES_ACTION = "requires_action"
    ERROR = "error"


class ConfirmationResponse(BaseModel):
    """Raw answer of a confirmation call."""

    status: ConfirmationStatus
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    redirect_url: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class RequiredAction(str, Enum):
    """What the buyer has to do outside the app to finish paying."""

    DISPLAY_QR = "display_qr"
    DISPLAY_BARCODE = "display_barcode"
    REDIRECT = "redirect"


class PaymentSucceeded(BaseModel):
    status: Literal["succeeded"] = "succeeded"
    transaction_id: str

    model_config = ConfigDict(frozen=True)


class PaymentRequiresAction(BaseModel):
    status: Literal["requires_action"] = "requires_action"
    action: RequiredAction
    payload: str

    model_config = ConfigDict(frozen=True)


class PaymentFailed(BaseModel):
    status: Literal["failed"] = "failed"
    message: str = Field(min_length=1)

    model_config = ConfigDict(frozen=True)


PaymentResult = Annotated[
    Union[PaymentSucceeded, PaymentRequiresAction, PaymentFailed],
    Field(discriminator="status"),
]


class CheckoutParams(BaseModel):
    """Navigation parameters that open a checkout."""

    item_kind: str = Field(default=ItemKind.PLAN.value, alias="type")
    item_id: int = Field(default=0, alias="itemId")
    organization_id: Optional[int] = Field(default=None, alias="organizationId")
    return_url: str = Field(default="/", alias="returnUrl")
    mode: CheckoutMode = CheckoutMode.ONETIME
    gateway: Optional[PaymentGateway] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Notification(BaseModel):
    """Toast shown to the buyer."""

    title: str
    description: str = ""
    severity: NotificationSeverity = NotificationSeverity.INFO
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class InitiationResult(BaseModel):
    """Either a payment intent or the reason one could not be created."""

    item: Optional[PurchasableItem] = None
    intent: Optional[PaymentIntent] = None
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "InitiationResult":
        if (self.intent is None) == (self.error is None):
            raise ValueError("exactly one of intent or error must be set")
        if self.error is not None and not self.error.strip():
            raise ValueError("error must not be blank")
        return self

    @property
    def ok(self) -> bool:
        return self.intent is not None


class ReconciliationOutcome(BaseModel):
    """Result of activating a paid item in the owning system."""

    succeeded: bool
    transaction_id: str
    redirect_to: Optional[str] = None
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class SubscriptionEventType(str, Enum):
    """Processor subscription events the service reacts to."""

    CREATED = "customer.subscription.created"
    UPDATED = "customer.subscription.updated"
    DELETED = "customer.subscription.deleted"


class SubscriptionEvent(BaseModel):
    """Normalized processor subscription webhook event."""

    event_id: str
    event_type: SubscriptionEventType
    subscription_id: str
    status: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


__all__ = [
    "ALLOWED_INSTALLMENTS",
    "BillingCycle",
    "BillingDetails",
    "BoletoPaymentData",
    "CardPaymentData",
    "CheckoutMode",
    "CheckoutParams",
    "ConfirmationResponse",
    "ConfirmationState",
    "ConfirmationStatus",
    "InitiationResult",
    "ItemKind",
    "Notification",
    "NotificationSeverity",
    "PaymentFailed",
    "PaymentGateway",
    "PaymentIntent",
    "PaymentMethod",
    "PaymentMethodData",
    "PaymentRequiresAction",
    "PaymentResult",
    "PaymentSucceeded",
    "PixPaymentData",
    "PurchasableItem",
    "ReconciliationOutcome",
    "RequiredAction",
    "SubscriptionEvent",
    "SubscriptionEventType",
    "format_price",
    "is_well_formed_client_secret",
]
