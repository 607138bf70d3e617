"""Exclusive choice between card, Pix and boleto, with the card form state."""
from __future__ import annotations

from decimal import ROUND_UP, Decimal
from typing import Dict, List, Optional

from .exceptions import CardValidationError
from .models import (
    ALLOWED_INSTALLMENTS,
    BoletoPaymentData,
    CardPaymentData,
    PaymentMethod,
    PaymentMethodData,
    PixPaymentData,
    format_price,
)

CARD_FIELDS = ("holder_name", "card_number", "expiry", "cvc")

_FIELD_LABELS = {
    "holder_name": "Cardholder name",
    "card_number": "Card number",
    "expiry": "Expiry date",
    "cvc": "Security code",
}


class PaymentMethodSelector:
    """Holds the buyer's method choice until submission.

    Selecting a method is idempotent and activates exactly one panel. Card
    validation only checks that the four fields are filled in.
    """

    def __init__(self, method: PaymentMethod = PaymentMethod.CREDIT_CARD) -> None:
        self._method = method
        self._card: Dict[str, str] = {name: "" for name in CARD_FIELDS}
        self._installments = 1
        self._errors: Dict[str, str] = {}

    @property
    def method(self) -> PaymentMethod:
        return self._method

    @property
    def active_panel(self) -> str:
        return self._method.value

    @property
    def installments(self) -> int:
        return self._installments

    @property
    def errors(self) -> Dict[str, str]:
        return dict(self._errors)

    @property
    def masked_card_number(self) -> Optional[str]:
        digits = "".join(ch for ch in self._card["card_number"] if ch.isdigit())
        if len(digits) < 4:
            return None
        return f"**** **** **** {digits[-4:]}"

    def select(self, method: PaymentMethod) -> None:
        self._method = PaymentMethod(method)
        self._errors.clear()

    def update_card(self, **fields: Optional[str]) -> None:
        unknown = set(fields) - set(CARD_FIELDS)
        if unknown:
            raise ValueError(f"Unknown card field(s): {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            if value is None:
                continue
            self._card[name] = value
            if value.strip():
                self._errors.pop(name, None)

    def set_installments(self, count: int) -> None:
        if count not in ALLOWED_INSTALLMENTS:
            raise ValueError(f"installments must be one of {ALLOWED_INSTALLMENTS}")
        self._installments = count

    def build_submission(self) -> PaymentMethodData:
        """Return the method payload handed to the confirmation step."""

        if self._method == PaymentMethod.PIX:
            return PixPaymentData()
        if self._method == PaymentMethod.BOLETO:
            return BoletoPaymentData()

        missing = tuple(name for name in CARD_FIELDS if not self._card[name].strip())
        if missing:
            self._errors = {name: f"{_FIELD_LABELS[name]} is required" for name in missing}
            raise CardValidationError(
                "Please fill in all card details.",
                missing_fields=missing,
            )
        self._errors.clear()
        return CardPaymentData(
            holder_name=self._card["holder_name"].strip(),
            card_number=self._card["card_number"].strip(),
            expiry=self._card["expiry"].strip(),
            cvc=self._card["cvc"].strip(),
            installments=self._installments,
        )


def installment_options(total: Decimal) -> List[Dict[str, object]]:
    """List the installment plans offered for ``total``, all interest-free."""

    options: List[Dict[str, object]] = []
    for count in ALLOWED_INSTALLMENTS:
        amount = (Decimal(total) / count).quantize(Decimal("0.01"), rounding=ROUND_UP)
        if count == 1:
            label = f"Single payment - {format_price(amount)}"
        else:
            label = f"{count}x of {format_price(amount)} interest-free"
        options.append({"count": count, "amount": amount, "label": label})
    return options


__all__ = ["CARD_FIELDS", "PaymentMethodSelector", "installment_options"]
