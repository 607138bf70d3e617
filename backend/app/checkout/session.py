"""Checkout sessions tying the workflow steps together, and their store."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Mapping, Optional
from uuid import uuid4

from .cancellation import CancellationScope
from .collaborators import CatalogCollaborator, PaymentCollaborator
from .exceptions import (
    CardValidationError,
    CheckoutCancelled,
    CheckoutSessionNotFound,
    InvalidCheckoutTransition,
    PaymentConfigurationError,
)
from .executor import ConfirmationExecutor
from .initiator import IntentInitiator
from .models import (
    CheckoutParams,
    ConfirmationState,
    InitiationResult,
    NotificationSeverity,
    PaymentGateway,
    PaymentIntent,
    PaymentMethod,
    PaymentRequiresAction,
    PaymentResult,
    PaymentSucceeded,
    PurchasableItem,
    ReconciliationOutcome,
    RequiredAction,
)
from .notifications import SessionNotificationSink
from .reconciliation import ReconciliationNotifier
from .selector import PaymentMethodSelector

logger = logging.getLogger("checkout.session")

_MANUAL_ACTIONS = {RequiredAction.DISPLAY_QR, RequiredAction.DISPLAY_BARCODE}


def _new_session_id() -> str:
    return f"chk_{uuid4().hex}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutSession:
    """One buyer's pass through intent → method → confirmation → reconciliation.

    Steps only advance on explicit calls; nothing runs in the background.
    """

    def __init__(
        self,
        *,
        session_id: str,
        params: CheckoutParams,
        catalog: CatalogCollaborator,
        payment: PaymentCollaborator,
        gateway: PaymentGateway,
        post_payment_url: str,
        owner_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.session_id = session_id
        self.owner_id = owner_id
        self.params = params
        self.gateway = gateway
        self.created_at = created_at or _utcnow()
        self.notifications = SessionNotificationSink(session_id)
        self.scope = CancellationScope(session_id)
        self.initiator = IntentInitiator(
            catalog=catalog, payment=payment, notifier=self.notifications, gateway=gateway
        )
        self.selector = PaymentMethodSelector()
        self.executor = ConfirmationExecutor(payment, self.notifications)
        self.reconciler = ReconciliationNotifier(
            catalog=catalog, notifier=self.notifications, post_payment_url=post_payment_url
        )
        self.item: Optional[PurchasableItem] = None
        self.intent: Optional[PaymentIntent] = None
        self.error: Optional[str] = None
        self.reconciliation: Optional[ReconciliationOutcome] = None
        self._started = False
        self._reconciling = False

    @property
    def abandoned(self) -> bool:
        return self.scope.cancelled

    @property
    def state(self) -> ConfirmationState:
        return self.executor.state

    @property
    def last_result(self) -> Optional[PaymentResult]:
        return self.executor.last_result

    @property
    def completed(self) -> bool:
        """True once the purchase has been activated in the owning system."""

        return self.reconciliation is not None and self.reconciliation.succeeded

    @property
    def redirect_to(self) -> Optional[str]:
        if self.completed:
            return self.reconciliation.redirect_to
        return None

    async def start(self) -> InitiationResult:
        self._ensure_active()
        if self._started:
            raise InvalidCheckoutTransition("Checkout has already been started")
        self._started = True
        result = await self.initiator.initiate(self.params, scope=self.scope)
        self.item = result.item
        self.intent = result.intent
        self.error = result.error
        return result

    def select_method(self, method: PaymentMethod) -> None:
        self._ensure_editable()
        self.selector.select(method)

    def update_card(self, **fields: Optional[str]) -> None:
        self._ensure_editable()
        self.selector.update_card(**fields)

    def set_installments(self, count: int) -> None:
        self._ensure_editable()
        self.selector.set_installments(count)

    async def submit(self) -> Optional[PaymentResult]:
        """Validate, confirm and, on success, reconcile.

        Returns ``None`` when a confirmation is already in flight.
        """

        self._ensure_active()
        intent = self._require_intent()
        if self.executor.is_processing:
            return None
        if self.executor.state == ConfirmationState.SUCCEEDED or self.completed or self._reconciling:
            raise InvalidCheckoutTransition("This payment has already been confirmed")

        try:
            data = self.selector.build_submission()
        except CardValidationError as exc:
            self.notifications.show("Missing information", exc.message, NotificationSeverity.ERROR)
            raise

        result = await self.executor.submit(intent, data, scope=self.scope)
        if isinstance(result, PaymentSucceeded):
            await self._reconcile(result.transaction_id, intent)
        return result

    async def confirm_manual(self) -> ReconciliationOutcome:
        """Handle "I already paid" after a Pix code or bank slip was shown."""

        self._ensure_active()
        intent = self._require_intent()
        result = self.executor.last_result
        if (
            self.executor.state != ConfirmationState.REQUIRES_ACTION
            or not isinstance(result, PaymentRequiresAction)
            or result.action not in _MANUAL_ACTIONS
        ):
            raise InvalidCheckoutTransition("There is no pending Pix or bank slip payment to confirm")
        if self._reconciling:
            raise InvalidCheckoutTransition("Payment confirmation is already in progress")
        if self.completed:
            raise InvalidCheckoutTransition("This payment has already been confirmed")
        return await self._reconcile(intent.intent_id, intent)

    def abandon(self) -> int:
        interrupted = self.scope.cancel()
        logger.info(
            "Checkout %s abandoned state=%s interrupted=%s",
            self.session_id,
            self.executor.state.value,
            interrupted,
        )
        return interrupted

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now >= self.created_at + ttl

    async def _reconcile(self, transaction_id: str, intent: PaymentIntent) -> ReconciliationOutcome:
        self._reconciling = True
        try:
            outcome = await self.reconciler.reconcile(
                transaction_id, intent.item, intent.organization_id, scope=self.scope
            )
        finally:
            self._reconciling = False
        self.reconciliation = outcome
        return outcome

    def _require_intent(self) -> PaymentIntent:
        if self.intent is None:
            raise InvalidCheckoutTransition("A payment intent is required before confirming a payment")
        return self.intent

    def _ensure_active(self) -> None:
        if self.scope.cancelled:
            raise CheckoutCancelled(f"Checkout {self.session_id} was abandoned")

    def _ensure_editable(self) -> None:
        self._ensure_active()
        if self.executor.is_processing:
            raise InvalidCheckoutTransition("The payment method cannot change while a payment is processing")
        if self.executor.state == ConfirmationState.SUCCEEDED or self.completed or self._reconciling:
            raise InvalidCheckoutTransition("This payment has already been confirmed")


@dataclass
class CheckoutSessionFactory:
    """Builds sessions wired to the collaborator of the requested gateway."""

    catalog: CatalogCollaborator
    payments: Mapping[PaymentGateway, PaymentCollaborator]
    default_gateway: PaymentGateway = PaymentGateway.STRIPE
    post_payment_url: str = "/login"
    id_factory: Callable[[], str] = field(default=_new_session_id)

    def create(self, params: CheckoutParams, *, owner_id: Optional[int] = None) -> CheckoutSession:
        gateway = params.gateway or self.default_gateway
        payment = self.payments.get(gateway)
        if payment is None:
            raise PaymentConfigurationError(
                "The payment system is not configured correctly. Please contact support.",
                detail={"gateway": gateway.value},
            )
        return CheckoutSession(
            session_id=self.id_factory(),
            params=params,
            catalog=self.catalog,
            payment=payment,
            gateway=gateway,
            post_payment_url=self.post_payment_url,
            owner_id=owner_id,
        )


class InMemoryCheckoutSessionStore:
    """Keeps live sessions in process memory; expired ones are abandoned."""

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, CheckoutSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: CheckoutSession) -> CheckoutSession:
        self.purge_expired()
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> CheckoutSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise CheckoutSessionNotFound(f"Checkout session {session_id} not found")
        if session.is_expired(self._clock(), self.ttl):
            self.discard(session_id)
            raise CheckoutSessionNotFound(f"Checkout session {session_id} has expired")
        return session

    def discard(self, session_id: str) -> Optional[CheckoutSession]:
        session = self._sessions.pop(session_id, None)
        if session is not None and not session.abandoned:
            session.abandon()
        return session

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, session in self._sessions.items() if session.is_expired(now, self.ttl)]
        for session_id in expired:
            self.discard(session_id)
        return len(expired)

    def clear(self) -> None:
        for session_id in list(self._sessions):
            self.discard(session_id)


__all__ = ["CheckoutSession", "CheckoutSessionFactory", "InMemoryCheckoutSessionStore"]
