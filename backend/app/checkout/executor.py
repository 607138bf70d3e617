"""Submits the chosen payment method to the processor and classifies the outcome."""
from __future__ import annotations

import logging
from typing import Optional

from .cancellation import CancellationScope
from .collaborators import NotificationSink, PaymentCollaborator
from .exceptions import CheckoutCancelled, ConfirmationError
from .models import (
    BoletoPaymentData,
    CardPaymentData,
    ConfirmationResponse,
    ConfirmationState,
    ConfirmationStatus,
    NotificationSeverity,
    PaymentFailed,
    PaymentIntent,
    PaymentMethodData,
    PaymentRequiresAction,
    PaymentResult,
    PaymentSucceeded,
    PixPaymentData,
    RequiredAction,
)

logger = logging.getLogger("checkout.executor")

GENERIC_PAYMENT_ERROR = "An error occurred while processing the payment."


class ConfirmationExecutor:
    """State machine ``idle -> submitting -> succeeded | requires_action | failed``.

    ``requires_action`` is terminal here: the buyer finishes paying outside the
    app and signals it manually. A failed attempt can be submitted again.
    """

    def __init__(self, payment: PaymentCollaborator, notifier: NotificationSink) -> None:
        self.payment = payment
        self.notifier = notifier
        self._state = ConfirmationState.IDLE
        self._result: Optional[PaymentResult] = None

    @property
    def state(self) -> ConfirmationState:
        return self._state

    @property
    def last_result(self) -> Optional[PaymentResult]:
        return self._result

    @property
    def is_processing(self) -> bool:
        return self._state == ConfirmationState.SUBMITTING

    async def submit(
        self,
        intent: PaymentIntent,
        data: PaymentMethodData,
        *,
        scope: CancellationScope,
    ) -> Optional[PaymentResult]:
        """Run one confirmation attempt.

        Returns ``None`` without side effects while another attempt is in
        flight; otherwise returns exactly one :data:`PaymentResult`.
        """

        if self._state == ConfirmationState.SUBMITTING:
            logger.debug("Ignoring submit for %s: confirmation already in flight", intent.intent_id)
            return None

        self._state = ConfirmationState.SUBMITTING
        result: Optional[PaymentResult] = None
        try:
            result = await self._dispatch(intent, data, scope)
        except CheckoutCancelled:
            raise
        except Exception as exc:
            message = _message_from(exc)
            logger.warning("Confirmation of %s raised: %s", intent.intent_id, message)
            result = PaymentFailed(message=message or GENERIC_PAYMENT_ERROR)
        finally:
            # interrupted without an outcome
            if result is None:
                self._state = ConfirmationState.IDLE

        self._record(intent, result)
        return result

    async def _dispatch(
        self,
        intent: PaymentIntent,
        data: PaymentMethodData,
        scope: CancellationScope,
    ) -> PaymentResult:
        if isinstance(data, CardPaymentData):
            response = await scope.run(self.payment.confirm_payment(intent.client_secret, data))
            return _classify(intent, response)
        if isinstance(data, PixPaymentData):
            payload = await scope.run(
                self.payment.generate_instant_transfer_payload(
                    intent.item.id, client_secret=intent.client_secret
                )
            )
            return PaymentRequiresAction(action=RequiredAction.DISPLAY_QR, payload=payload)
        if isinstance(data, BoletoPaymentData):
            payload = await scope.run(
                self.payment.generate_bank_slip_payload(intent.item.id, client_secret=intent.client_secret)
            )
            return PaymentRequiresAction(action=RequiredAction.DISPLAY_BARCODE, payload=payload)
        raise ConfirmationError(f"Unsupported payment method {getattr(data, 'method', data)!r}")

    def _record(self, intent: PaymentIntent, result: PaymentResult) -> None:
        self._result = result
        if isinstance(result, PaymentSucceeded):
            self._state = ConfirmationState.SUCCEEDED
            logger.info("Payment %s succeeded transaction=%s", intent.intent_id, result.transaction_id)
        elif isinstance(result, PaymentRequiresAction):
            self._state = ConfirmationState.REQUIRES_ACTION
            logger.info("Payment %s awaits buyer action %s", intent.intent_id, result.action.value)
            self.notifier.show(*_action_notice(result.action), NotificationSeverity.INFO)
        else:
            self._state = ConfirmationState.FAILED
            self.notifier.show("Payment error", result.message, NotificationSeverity.ERROR)


def _classify(intent: PaymentIntent, response: ConfirmationResponse) -> PaymentResult:
    if response.status == ConfirmationStatus.ERROR:
        return PaymentFailed(message=(response.error_message or "").strip() or GENERIC_PAYMENT_ERROR)
    if response.status == ConfirmationStatus.REQUIRES_ACTION:
        return PaymentRequiresAction(action=RequiredAction.REDIRECT, payload=response.redirect_url or "")
    return PaymentSucceeded(transaction_id=response.transaction_id or intent.intent_id)


def _message_from(exc: Exception) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message.strip():
        return message.strip()
    return str(exc).strip()


def _action_notice(action: RequiredAction) -> tuple[str, str]:
    if action == RequiredAction.DISPLAY_QR:
        return "Pix code generated", "Scan the QR code with your bank app to pay."
    if action == RequiredAction.DISPLAY_BARCODE:
        return "Bank slip generated", "Pay the bank slip within 3 business days."
    return "Processing payment", "We are processing your payment. Please wait."


__all__ = ["ConfirmationExecutor", "GENERIC_PAYMENT_ERROR"]
