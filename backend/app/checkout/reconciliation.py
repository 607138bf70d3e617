"""Activates a paid plan or module in the owning system."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .cancellation import CancellationScope
from .collaborators import CatalogCollaborator, NotificationSink
from .exceptions import CheckoutCancelled
from .models import ItemKind, NotificationSeverity, PurchasableItem, ReconciliationOutcome

logger = logging.getLogger("checkout.reconciliation")

SUPPORT_MESSAGE = (
    "Your payment was received, but we could not update your account. "
    "Please contact support."
)


@dataclass
class ReconciliationNotifier:
    """Tells the owning system about a confirmed payment, then redirects.

    A failure here leaves the processor charged while the purchase stays
    inactive; nothing is retried or refunded and the buyer is told to contact
    support.
    """

    catalog: CatalogCollaborator
    notifier: NotificationSink
    post_payment_url: str = "/login"

    async def reconcile(
        self,
        transaction_id: str,
        item: PurchasableItem,
        organization_id: Optional[int],
        *,
        scope: CancellationScope,
    ) -> ReconciliationOutcome:
        try:
            if item.kind == ItemKind.PLAN:
                await scope.run(self.catalog.confirm_plan_payment(transaction_id, organization_id))
            else:
                await scope.run(self.catalog.confirm_module_payment(transaction_id))
        except CheckoutCancelled:
            raise
        except Exception as exc:
            logger.error(
                "Reconciliation failed after payment transaction=%s kind=%s item=%s org=%s: %s",
                transaction_id,
                item.kind.value,
                item.id,
                organization_id,
                exc,
                extra={"checkout_transaction": transaction_id},
            )
            self.notifier.show("Confirmation error", SUPPORT_MESSAGE, NotificationSeverity.ERROR)
            return ReconciliationOutcome(
                succeeded=False,
                transaction_id=transaction_id,
                error=str(exc) or SUPPORT_MESSAGE,
            )

        logger.info(
            "Activated %s %s for org=%s transaction=%s",
            item.kind.value,
            item.id,
            organization_id,
            transaction_id,
        )
        self.notifier.show(
            "Payment approved!",
            "Your payment was processed successfully.",
            NotificationSeverity.SUCCESS,
        )
        return ReconciliationOutcome(
            succeeded=True,
            transaction_id=transaction_id,
            redirect_to=self.post_payment_url,
        )


__all__ = ["ReconciliationNotifier", "SUPPORT_MESSAGE"]
