"""Payment processor integrations."""
from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

import httpx

from .collaborators import BillingDetailsSource, PaymentCollaborator
from .exceptions import ConfirmationError, IntentCreationError
from .models import (
    BillingCycle,
    CardPaymentData,
    CheckoutMode,
    ConfirmationResponse,
    ConfirmationStatus,
    ItemKind,
    PaymentMethodData,
    PurchasableItem,
)

logger = logging.getLogger("checkout.providers")

BOLETO_DETAILS_MISSING = (
    "Bank slips need the organization's billing name, email, address and tax ID. "
    "Please complete them or choose another payment method."
)


def intent_id_from_secret(client_secret: str) -> str:
    intent_id, separator, _ = client_secret.partition("_secret_")
    if not separator or not intent_id:
        raise ConfirmationError("Invalid payment token")
    return intent_id


def _item_metadata(item: PurchasableItem, organization_id: Optional[int]) -> Dict[str, str]:
    metadata = {"itemKind": item.kind.value, "itemId": str(item.id), "itemName": item.name}
    if item.kind == ItemKind.PLAN:
        metadata["planId"] = str(item.id)
        metadata["planName"] = item.name
    if organization_id is not None:
        metadata["organizationId"] = str(organization_id)
    return metadata


def _parse_expiry(expiry: str) -> Tuple[int, int]:
    month_text, _, year_text = expiry.replace(" ", "").partition("/")
    try:
        month, year = int(month_text), int(year_text)
    except ValueError as exc:
        raise ValueError("Invalid card expiry date") from exc
    if year < 100:
        year += 2000
    if not 1 <= month <= 12:
        raise ValueError("Invalid card expiry date")
    return month, year


class StripeAPIError(Exception):
    """Error payload returned by the Stripe API."""

    def __init__(self, message: str, *, status_code: int, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class StripePaymentCollaborator(PaymentCollaborator):
    """Talks to the Stripe REST API with form-encoded requests."""

    def __init__(
        self,
        *,
        secret_key: str,
        currency: str = "brl",
        api_base: str = "https://api.stripe.com",
        return_url: str = "http://localhost:5173/checkout",
        timeout: float = 15.0,
        billing_details: Optional[BillingDetailsSource] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must be provided")
        self._secret_key = secret_key
        self.currency = currency
        self.api_base = api_base.rstrip("/")
        self.return_url = return_url
        self.timeout = timeout
        self._billing_details = billing_details
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        data: Optional[Mapping[str, object]] = None,
        params: Optional[Mapping[str, object]] = None,
    ) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.api_base,
            auth=(self._secret_key, ""),
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.request(method, path, data=data, params=params)
        payload = response.json() if response.content else {}
        if response.status_code >= 400:
            error = payload.get("error") or {}
            message = error.get("message") or f"Stripe request failed with status {response.status_code}"
            raise StripeAPIError(message, status_code=response.status_code, code=error.get("code"))
        return payload

    async def create_intent(
        self,
        item: PurchasableItem,
        *,
        organization_id: Optional[int],
        mode: CheckoutMode,
    ) -> str:
        try:
            if mode == CheckoutMode.SUBSCRIPTION:
                secret = await self._create_subscription(item, organization_id)
            else:
                secret = await self._create_payment_intent(item, organization_id)
        except StripeAPIError as exc:
            raise IntentCreationError(exc.message) from exc
        if not secret:
            raise IntentCreationError("Stripe did not return a client secret")
        return secret

    async def _create_payment_intent(self, item: PurchasableItem, organization_id: Optional[int]) -> str:
        data: Dict[str, object] = {
            "amount": item.amount_in_cents,
            "currency": self.currency,
            "description": item.description or item.name,
            "payment_method_types[0]": "card",
            "payment_method_types[1]": "pix",
            "payment_method_types[2]": "boleto",
        }
        data.update({f"metadata[{key}]": value for key, value in _item_metadata(item, organization_id).items()})
        intent = await self._request("POST", "/v1/payment_intents", data=data)
        return str(intent.get("client_secret") or "")

    async def _create_subscription(self, item: PurchasableItem, organization_id: Optional[int]) -> str:
        if organization_id is None:
            raise IntentCreationError("organizationId is required for a subscription")
        customer_id = await self.get_or_create_customer(organization_id)
        product = await self._request(
            "POST",
            "/v1/products",
            data={"name": item.name, "description": item.description or f"Plan {item.name}"},
        )
        interval = "year" if item.kind == ItemKind.MODULE and item.billing_cycle == BillingCycle.YEARLY else "month"
        price = await self._request(
            "POST",
            "/v1/prices",
            data={
                "currency": self.currency,
                "product": product["id"],
                "unit_amount": item.amount_in_cents,
                "recurring[interval]": interval,
            },
        )
        data: Dict[str, object] = {
            "customer": customer_id,
            "items[0][price]": price["id"],
            "payment_behavior": "default_incomplete",
            "payment_settings[save_default_payment_method]": "on_subscription",
            "expand[0]": "latest_invoice.payment_intent",
        }
        data.update({f"metadata[{key}]": value for key, value in _item_metadata(item, organization_id).items()})
        subscription = await self._request("POST", "/v1/subscriptions", data=data)
        invoice = subscription.get("latest_invoice") or {}
        payment_intent = invoice.get("payment_intent") if isinstance(invoice, dict) else None
        if not isinstance(payment_intent, dict):
            raise IntentCreationError("Stripe subscription has no pending payment")
        logger.info("Created Stripe subscription %s for org=%s", subscription.get("id"), organization_id)
        return str(payment_intent.get("client_secret") or "")

    async def get_or_create_customer(self, organization_id: int) -> str:
        found = await self._request(
            "GET",
            "/v1/customers/search",
            params={"query": f"metadata['organizationId']:'{organization_id}'", "limit": 1},
        )
        existing: List[Dict[str, Any]] = found.get("data") or []
        if existing:
            return str(existing[0]["id"])
        customer = await self._request(
            "POST",
            "/v1/customers",
            data={
                "description": f"Organization ID: {organization_id}",
                "metadata[organizationId]": str(organization_id),
            },
        )
        logger.info("Created Stripe customer %s for org=%s", customer.get("id"), organization_id)
        return str(customer["id"])

    async def confirm_payment(self, client_secret: str, data: PaymentMethodData) -> ConfirmationResponse:
        if not isinstance(data, CardPaymentData):
            raise ConfirmationError("Only card payments are confirmed directly")
        intent_id = intent_id_from_secret(client_secret)
        try:
            exp_month, exp_year = _parse_expiry(data.expiry)
        except ValueError as exc:
            return ConfirmationResponse(status=ConfirmationStatus.ERROR, error_message=str(exc))

        form: Dict[str, object] = {
            "payment_method_data[type]": "card",
            "payment_method_data[card][number]": data.card_number.replace(" ", ""),
            "payment_method_data[card][exp_month]": exp_month,
            "payment_method_data[card][exp_year]": exp_year,
            "payment_method_data[card][cvc]": data.cvc,
            "payment_method_data[billing_details][name]": data.holder_name,
            "return_url": self.return_url,
        }
        if data.installments > 1:
            form.update(
                {
                    "payment_method_options[card][installments][plan][type]": "fixed_count",
                    "payment_method_options[card][installments][plan][interval]": "month",
                    "payment_method_options[card][installments][plan][count]": data.installments,
                }
            )
        try:
            intent = await self._request("POST", f"/v1/payment_intents/{intent_id}/confirm", data=form)
        except StripeAPIError as exc:
            if exc.status_code >= 500:
                raise
            return ConfirmationResponse(status=ConfirmationStatus.ERROR, error_message=exc.message)

        status = intent.get("status")
        if status == "succeeded":
            return ConfirmationResponse(status=ConfirmationStatus.SUCCEEDED, transaction_id=intent.get("id"))
        if status in {"requires_action", "processing"}:
            next_action = intent.get("next_action") or {}
            redirect = (next_action.get("redirect_to_url") or {}).get("url")
            return ConfirmationResponse(status=ConfirmationStatus.REQUIRES_ACTION, redirect_url=redirect)
        last_error = intent.get("last_payment_error") or {}
        return ConfirmationResponse(
            status=ConfirmationStatus.ERROR,
            error_message=last_error.get("message") or f"Payment ended with status {status}",
        )

    async def generate_instant_transfer_payload(self, item_id: int, *, client_secret: str) -> str:
        intent = await self._confirm_voucher(client_secret, {"payment_method_data[type]": "pix"})
        details = (intent.get("next_action") or {}).get("pix_display_qr_code") or {}
        payload = details.get("data")
        if not payload:
            raise ConfirmationError("The payment processor did not return a Pix code")
        return payload

    async def generate_bank_slip_payload(self, item_id: int, *, client_secret: str) -> str:
        form: Dict[str, object] = {"payment_method_data[type]": "boleto"}
        form.update(await self._boleto_billing_form(client_secret))
        intent = await self._confirm_voucher(client_secret, form)
        details = (intent.get("next_action") or {}).get("boleto_display_details") or {}
        payload = details.get("number")
        if not payload:
            raise ConfirmationError("The payment processor did not return a bank slip")
        return payload

    async def _boleto_billing_form(self, client_secret: str) -> Dict[str, object]:
        intent_id = intent_id_from_secret(client_secret)
        try:
            intent = await self._request("GET", f"/v1/payment_intents/{intent_id}")
        except StripeAPIError as exc:
            raise ConfirmationError(exc.message) from exc
        organization_id = (intent.get("metadata") or {}).get("organizationId")
        details = None
        if organization_id and self._billing_details is not None:
            details = await self._billing_details.get_billing_details(int(organization_id))
        if details is None:
            logger.info("Bank slip for %s refused: no billing details for org=%s", intent_id, organization_id)
            raise ConfirmationError(BOLETO_DETAILS_MISSING)
        prefix = "payment_method_data[billing_details]"
        return {
            f"{prefix}[name]": details.name,
            f"{prefix}[email]": details.email,
            f"{prefix}[address][line1]": details.line1,
            f"{prefix}[address][city]": details.city,
            f"{prefix}[address][state]": details.state,
            f"{prefix}[address][postal_code]": details.postal_code,
            f"{prefix}[address][country]": details.country,
            "payment_method_data[boleto][tax_id]": details.tax_id,
        }

    async def _confirm_voucher(self, client_secret: str, form: Dict[str, object]) -> Dict[str, Any]:
        intent_id = intent_id_from_secret(client_secret)
        try:
            return await self._request("POST", f"/v1/payment_intents/{intent_id}/confirm", data=form)
        except StripeAPIError as exc:
            raise ConfirmationError(exc.message) from exc


def _emv_field(tag: str, value: str) -> str:
    return f"{tag}{len(value):02d}{value}"


def _crc16_ccitt(payload: str) -> str:
    crc = 0xFFFF
    for byte in payload.encode("utf-8"):
        crc ^= byte << 8
        for _ in range(8):
            crc = ((crc << 1) ^ 0x1021) if crc & 0x8000 else (crc << 1)
            crc &= 0xFFFF
    return f"{crc:04X}"


def build_pix_payload(*, key: str, merchant_name: str, city: str, amount_cents: int, txid: str) -> str:
    """Build a static Pix "copy and paste" code (EMV BR Code)."""

    account = _emv_field("00", "br.gov.bcb.pix") + _emv_field("01", key)
    body = (
        _emv_field("00", "01")
        + _emv_field("26", account)
        + _emv_field("52", "0000")
        + _emv_field("53", "986")
        + _emv_field("54", f"{amount_cents / 100:.2f}")
        + _emv_field("58", "BR")
        + _emv_field("59", merchant_name[:25])
        + _emv_field("60", city[:15])
        + _emv_field("62", _emv_field("05", txid[:25]))
        + "6304"
    )
    return body + _crc16_ccitt(body)


def _mod10(digits: str) -> int:
    total = 0
    for index, char in enumerate(reversed(digits)):
        product = int(char) * (2 if index % 2 == 0 else 1)
        total += product // 10 + product % 10
    return (10 - total % 10) % 10


def _mod11(digits: str) -> int:
    total, weight = 0, 2
    for char in reversed(digits):
        total += int(char) * weight
        weight = 2 if weight == 9 else weight + 1
    check = 11 - total % 11
    return 1 if check in (0, 10, 11) else check


def build_boleto_line(*, bank_code: str, amount_cents: int, reference: str) -> str:
    """Build the 47-digit typeable line of a sandbox bank slip."""

    digest = int(hashlib.sha256(reference.encode("utf-8")).hexdigest(), 16)
    free_field = f"{digest % 10**25:025d}"
    due_factor = f"{1000 + digest % 8999:04d}"
    amount = f"{amount_cents:010d}"
    head = f"{bank_code[:3]:0>3}9"
    general = _mod11(f"{head}{due_factor}{amount}{free_field}")

    field1 = f"{head}{free_field[:5]}"
    field2 = free_field[5:15]
    field3 = free_field[15:]
    return (
        f"{field1}{_mod10(field1)}"
        f"{field2}{_mod10(field2)}"
        f"{field3}{_mod10(field3)}"
        f"{general}{due_factor}{amount}"
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _SandboxIntent:
    item: PurchasableItem
    organization_id: Optional[int]
    mode: CheckoutMode
    created_at: datetime


@dataclass
class SandboxPaymentCollaborator(PaymentCollaborator):
    """Local processor for development, tests and the ComplyPay gateway.

    Card numbers ending in ``0002`` are declined and ``3155`` requires a
    redirect; Pix and boleto generation wait ``latency_seconds`` to mimic the
    network.

    Intents are forgotten once they are older than ``intent_ttl``.
    """

    latency_seconds: float = 2.0
    pix_key: str = "checkout@example.com"
    merchant_name: str = "Checkout Sandbox"
    merchant_city: str = "SAO PAULO"
    bank_code: str = "341"
    redirect_base_url: str = "http://localhost:5173/sandbox/3ds"
    intent_ttl: timedelta = timedelta(hours=1)
    clock: Callable[[], datetime] = _utcnow
    _intents: Dict[str, _SandboxIntent] = field(default_factory=dict)

    async def create_intent(
        self,
        item: PurchasableItem,
        *,
        organization_id: Optional[int],
        mode: CheckoutMode,
    ) -> str:
        intent_id = f"pi_sandbox_{uuid4().hex[:24]}"
        client_secret = f"{intent_id}_secret_{uuid4().hex[:24]}"
        self.purge_expired()
        self._intents[intent_id] = _SandboxIntent(
            item=item, organization_id=organization_id, mode=mode, created_at=self.clock()
        )
        logger.debug("Sandbox intent %s for %s %s", intent_id, item.kind.value, item.id)
        return client_secret

    def _lookup(self, client_secret: str) -> Tuple[str, _SandboxIntent]:
        intent_id = intent_id_from_secret(client_secret)
        intent = self._intents.get(intent_id)
        if intent is None or self._is_expired(intent, self.clock()):
            self._intents.pop(intent_id, None)
            raise ConfirmationError("Unknown payment intent")
        return intent_id, intent

    def _is_expired(self, intent: _SandboxIntent, now: datetime) -> bool:
        return now >= intent.created_at + self.intent_ttl

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [key for key, intent in self._intents.items() if self._is_expired(intent, now)]
        for intent_id in expired:
            del self._intents[intent_id]
        return len(expired)

    @property
    def pending_intents(self) -> int:
        return len(self._intents)

    async def confirm_payment(self, client_secret: str, data: PaymentMethodData) -> ConfirmationResponse:
        intent_id, _ = self._lookup(client_secret)
        if not isinstance(data, CardPaymentData):
            raise ConfirmationError("Only card payments are confirmed directly")
        digits = "".join(ch for ch in data.card_number if ch.isdigit())
        if digits.endswith("0002"):
            return ConfirmationResponse(status=ConfirmationStatus.ERROR, error_message="Your card was declined.")
        if digits.endswith("3155"):
            return ConfirmationResponse(
                status=ConfirmationStatus.REQUIRES_ACTION,
                redirect_url=f"{self.redirect_base_url}/{intent_id}",
            )
        return ConfirmationResponse(status=ConfirmationStatus.SUCCEEDED, transaction_id=intent_id)

    async def generate_instant_transfer_payload(self, item_id: int, *, client_secret: str) -> str:
        intent_id, intent = self._lookup(client_secret)
        await asyncio.sleep(self.latency_seconds)
        return build_pix_payload(
            key=self.pix_key,
            merchant_name=self.merchant_name,
            city=self.merchant_city,
            amount_cents=intent.item.amount_in_cents,
            txid=intent_id.replace("_", "")[-25:],
        )

    async def generate_bank_slip_payload(self, item_id: int, *, client_secret: str) -> str:
        intent_id, intent = self._lookup(client_secret)
        await asyncio.sleep(self.latency_seconds)
        return build_boleto_line(
            bank_code=self.bank_code,
            amount_cents=intent.item.amount_in_cents,
            reference=intent_id,
        )


__all__ = [
    "BOLETO_DETAILS_MISSING",
    "SandboxPaymentCollaborator",
    "StripeAPIError",
    "StripePaymentCollaborator",
    "build_boleto_line",
    "build_pix_payload",
    "intent_id_from_secret",
]
