"""PostgreSQL persistence for the catalog and the organizations' purchases."""
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from backend.app_context import get_conn

from .exceptions import ReconciliationError
from .models import BillingCycle, BillingDetails, ItemKind, PaymentIntent, PurchasableItem, SubscriptionEvent

logger = logging.getLogger("checkout.repository")


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _features(value: Any) -> tuple:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.splitlines() if part.strip())
    return tuple(str(item) for item in value)


def _row_to_plan(row: Mapping[str, Any]) -> PurchasableItem:
    return PurchasableItem(
        kind=ItemKind.PLAN,
        id=int(row["id"]),
        name=row["name"],
        description=row.get("description") or "",
        price=Decimal(str(row["price"])),
        features=_features(row.get("features")),
    )


def _row_to_module(row: Mapping[str, Any]) -> PurchasableItem:
    cycle = row.get("billing_cycle")
    return PurchasableItem(
        kind=ItemKind.MODULE,
        id=int(row["id"]),
        name=row["name"],
        description=row.get("description") or "",
        price=Decimal(str(row["price"])),
        features=_features(row.get("features")),
        billing_cycle=BillingCycle(cycle) if cycle else None,
    )


class PostgresCatalogRepository:
    """Catalog collaborator backed by the platform database.

    psycopg2 is blocking, so the async entry points hand each query to a
    worker thread.
    """

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    # -- async collaborator surface -------------------------------------

    async def get_purchasable_item(self, kind: ItemKind, item_id: int) -> PurchasableItem:
        return await asyncio.to_thread(self.fetch_item, kind, item_id)

    async def record_payment_intent(self, intent: PaymentIntent) -> None:
        await asyncio.to_thread(self.save_payment_intent, intent)

    async def confirm_plan_payment(self, transaction_id: str, organization_id: Optional[int]) -> None:
        await asyncio.to_thread(self.activate_plan, transaction_id, organization_id)

    async def confirm_module_payment(self, transaction_id: str) -> None:
        await asyncio.to_thread(self.activate_module, transaction_id)

    async def get_billing_details(self, organization_id: int) -> Optional[BillingDetails]:
        return await asyncio.to_thread(self.fetch_billing_details, organization_id)

    # -- blocking implementation ----------------------------------------

    def fetch_item(self, kind: ItemKind, item_id: int) -> PurchasableItem:
        table = "plans" if kind == ItemKind.PLAN else "module_plans"
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM {table}
                WHERE id = %s AND is_active = TRUE
                LIMIT 1
                """,
                (item_id,),
            )
            row = cursor.fetchone()
        if not row:
            raise LookupError(f"{kind.value.capitalize()} {item_id} was not found")
        return _row_to_plan(row) if kind == ItemKind.PLAN else _row_to_module(row)

    def fetch_billing_details(self, organization_id: int) -> Optional[BillingDetails]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT name, billing_email, tax_id, address_line1, address_city,
                       address_state, address_postal_code
                FROM organizations
                WHERE id = %s
                """,
                (organization_id,),
            )
            row = cursor.fetchone()
        if not row:
            return None
        fields = {
            "name": row.get("name"),
            "email": row.get("billing_email"),
            "tax_id": row.get("tax_id"),
            "line1": row.get("address_line1"),
            "city": row.get("address_city"),
            "state": row.get("address_state"),
            "postal_code": row.get("address_postal_code"),
        }
        if not all(fields.values()):
            return None
        return BillingDetails(**fields)

    def save_payment_intent(self, intent: PaymentIntent) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO checkout_payment_intents (
                    intent_id,
                    item_kind,
                    item_id,
                    organization_id,
                    mode,
                    gateway,
                    amount,
                    status
                )
                VALUES (%(intent_id)s, %(item_kind)s, %(item_id)s, %(organization_id)s,
                        %(mode)s, %(gateway)s, %(amount)s, 'pending')
                ON CONFLICT (intent_id) DO UPDATE SET
                    organization_id = EXCLUDED.organization_id,
                    updated_at = NOW()
                """,
                {
                    "intent_id": intent.intent_id,
                    "item_kind": intent.item.kind.value,
                    "item_id": intent.item.id,
                    "organization_id": intent.organization_id,
                    "mode": intent.mode.value,
                    "gateway": intent.gateway.value,
                    "amount": intent.item.price,
                },
            )

    def _complete_intent(self, cursor: PgCursor, transaction_id: str) -> Dict[str, Any]:
        cursor.execute(
            """
            UPDATE checkout_payment_intents
            SET status = 'completed', transaction_id = %(transaction_id)s, updated_at = NOW()
            WHERE intent_id = %(transaction_id)s OR transaction_id = %(transaction_id)s
            RETURNING *
            """,
            {"transaction_id": transaction_id},
        )
        row = cursor.fetchone()
        if not row:
            raise ReconciliationError(f"No pending purchase matches transaction {transaction_id}")
        return row

    def activate_plan(self, transaction_id: str, organization_id: Optional[int]) -> None:
        with self._cursor() as cursor:
            intent = self._complete_intent(cursor, transaction_id)
            org_id = organization_id if organization_id is not None else intent.get("organization_id")
            if org_id is None:
                logger.info("Plan payment %s recorded without an organization", transaction_id)
                return
            cursor.execute(
                """
                UPDATE organizations
                SET plan_id = %s,
                    subscription_status = 'active',
                    updated_at = NOW()
                WHERE id = %s
                """,
                (intent["item_id"], org_id),
            )
            if cursor.rowcount == 0:
                raise ReconciliationError(f"Organization {org_id} not found")

    def activate_module(self, transaction_id: str) -> None:
        with self._cursor() as cursor:
            intent = self._complete_intent(cursor, transaction_id)
            if intent.get("organization_id") is None:
                raise ReconciliationError(f"Module purchase {transaction_id} has no organization")
            cursor.execute(
                """
                INSERT INTO organization_modules (organization_id, module_plan_id, status, activated_at)
                VALUES (%s, %s, 'active', NOW())
                ON CONFLICT (organization_id, module_plan_id) DO UPDATE SET
                    status = 'active',
                    activated_at = NOW()
                """,
                (intent["organization_id"], intent["item_id"]),
            )

    # -- webhook support ------------------------------------------------

    def record_webhook_event(self, event: SubscriptionEvent, payload: Mapping[str, Any]) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO checkout_webhook_events (
                    event_id,
                    event_type,
                    payload,
                    received_at,
                    processed_at
                )
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (event_id) DO NOTHING
                """,
                (
                    event.event_id,
                    event.event_type.value,
                    psycopg2.extras.Json(dict(payload)),
                    event.received_at,
                ),
            )
            return cursor.rowcount > 0

    def update_organization_subscription(
        self,
        organization_id: int,
        *,
        status: str,
        plan_id: Optional[int] = None,
        subscription_id: Optional[str] = None,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
    ) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE organizations
                SET subscription_status = %(status)s,
                    plan_id = COALESCE(%(plan_id)s, plan_id),
                    stripe_subscription_id = COALESCE(%(subscription_id)s, stripe_subscription_id),
                    plan_start_date = COALESCE(%(period_start)s, plan_start_date),
                    plan_expiry_date = COALESCE(%(period_end)s, plan_expiry_date),
                    updated_at = NOW()
                WHERE id = %(organization_id)s
                """,
                {
                    "status": status,
                    "plan_id": plan_id,
                    "subscription_id": subscription_id,
                    "period_start": current_period_start,
                    "period_end": current_period_end,
                    "organization_id": organization_id,
                },
            )
            return cursor.rowcount > 0


__all__ = ["PostgresCatalogRepository", "managed_connection"]
