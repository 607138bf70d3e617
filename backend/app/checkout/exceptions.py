"""Error taxonomy for the checkout workflow."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from fastapi import HTTPException, status


@dataclass
class CheckoutError(Exception):
    """Base class for checkout failures surfaced to API callers."""

    message: str
    code: str = "checkout_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class IntentCreationError(CheckoutError):
    """The catalog lookup or the processor refused to open a payment intent."""

    code: str = "intent_creation_failed"
    status_code: int = status.HTTP_502_BAD_GATEWAY


@dataclass
class CardValidationError(CheckoutError):
    """Required card fields are missing; nothing was sent to the processor."""

    code: str = "card_validation_failed"
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY
    missing_fields: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self.detail = {**(self.detail or {}), "missing_fields": list(self.missing_fields)}
        super().__post_init__()


@dataclass
class ConfirmationError(CheckoutError):
    """The processor rejected or could not process a confirmation."""

    code: str = "confirmation_failed"
    status_code: int = status.HTTP_502_BAD_GATEWAY


@dataclass
class ReconciliationError(CheckoutError):
    """Payment went through but the purchase could not be activated."""

    code: str = "reconciliation_failed"
    status_code: int = status.HTTP_502_BAD_GATEWAY


@dataclass
class CheckoutCancelled(CheckoutError):
    """The checkout was abandoned while work was still outstanding."""

    code: str = "checkout_cancelled"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class InvalidCheckoutTransition(CheckoutError):
    """The requested step is not allowed from the session's current state."""

    code: str = "invalid_transition"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class CheckoutSessionNotFound(CheckoutError):
    code: str = "session_not_found"
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass
class PaymentConfigurationError(CheckoutError):
    """The selected gateway is not configured in this environment."""

    code: str = "payment_not_configured"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE


@dataclass
class WebhookSignatureError(CheckoutError):
    code: str = "invalid_webhook_signature"
    status_code: int = status.HTTP_400_BAD_REQUEST


__all__ = [
    "CardValidationError",
    "CheckoutCancelled",
    "CheckoutError",
    "CheckoutSessionNotFound",
    "ConfirmationError",
    "IntentCreationError",
    "InvalidCheckoutTransition",
    "PaymentConfigurationError",
    "ReconciliationError",
    "WebhookSignatureError",
]
