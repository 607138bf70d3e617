"""Checkout domain package: payment intent, method selection, confirmation and reconciliation."""

from .cancellation import CancellationScope
from .collaborators import BillingDetailsSource, CatalogCollaborator, NotificationSink, PaymentCollaborator
from .exceptions import (
    CardValidationError,
    CheckoutCancelled,
    CheckoutError,
    CheckoutSessionNotFound,
    ConfirmationError,
    IntentCreationError,
    InvalidCheckoutTransition,
    PaymentConfigurationError,
    ReconciliationError,
    WebhookSignatureError,
)
from .executor import ConfirmationExecutor
from .initiator import IntentInitiator
from .models import (
    BillingCycle,
    BillingDetails,
    BoletoPaymentData,
    CardPaymentData,
    CheckoutMode,
    CheckoutParams,
    ConfirmationResponse,
    ConfirmationState,
    ConfirmationStatus,
    InitiationResult,
    ItemKind,
    Notification,
    NotificationSeverity,
    PaymentFailed,
    PaymentGateway,
    PaymentIntent,
    PaymentMethod,
    PaymentMethodData,
    PaymentRequiresAction,
    PaymentResult,
    PaymentSucceeded,
    PixPaymentData,
    PurchasableItem,
    ReconciliationOutcome,
    RequiredAction,
    SubscriptionEvent,
    SubscriptionEventType,
)
from .reconciliation import ReconciliationNotifier
from .selector import PaymentMethodSelector
from .session import CheckoutSession, CheckoutSessionFactory, InMemoryCheckoutSessionStore

__all__ = [
    "BillingCycle",
    "BillingDetails",
    "BillingDetailsSource",
    "BoletoPaymentData",
    "CancellationScope",
    "CardPaymentData",
    "CardValidationError",
    "CatalogCollaborator",
    "CheckoutCancelled",
    "CheckoutError",
    "CheckoutMode",
    "CheckoutParams",
    "CheckoutSession",
    "CheckoutSessionFactory",
    "CheckoutSessionNotFound",
    "ConfirmationError",
    "ConfirmationExecutor",
    "ConfirmationResponse",
    "ConfirmationState",
    "ConfirmationStatus",
    "InMemoryCheckoutSessionStore",
    "InitiationResult",
    "IntentCreationError",
    "IntentInitiator",
    "InvalidCheckoutTransition",
    "ItemKind",
    "Notification",
    "NotificationSeverity",
    "NotificationSink",
    "PaymentCollaborator",
    "PaymentConfigurationError",
    "PaymentFailed",
    "PaymentGateway",
    "PaymentIntent",
    "PaymentMethod",
    "PaymentMethodData",
    "PaymentMethodSelector",
    "PaymentRequiresAction",
    "PaymentResult",
    "PaymentSucceeded",
    "PixPaymentData",
    "PurchasableItem",
    "ReconciliationError",
    "ReconciliationNotifier",
    "RequiredAction",
    "SubscriptionEvent",
    "SubscriptionEventType",
    "WebhookSignatureError",
]
