"""Checkout configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .models import PaymentGateway


@dataclass(frozen=True)
class CheckoutConfig:
    """Configuration for payment processing and the checkout session lifecycle."""

    default_gateway: PaymentGateway
    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    stripe_api_base: str
    currency: str
    post_payment_url: str
    sandbox_latency_seconds: float
    session_ttl_seconds: int
    http_timeout_seconds: float
    app_base_url: str

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.stripe_secret_key)


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _to_gateway(value: Optional[str]) -> PaymentGateway:
    if not value or not value.strip():
        return PaymentGateway.STRIPE
    try:
        return PaymentGateway(value.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported payment gateway {value!r}") from exc


def load_checkout_config(env: Optional[Mapping[str, str]] = None) -> CheckoutConfig:
    """Load :class:`CheckoutConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    currency = (env_mapping.get("CHECKOUT_CURRENCY") or "brl").strip().lower()
    if len(currency) != 3:
        raise ValueError("CHECKOUT_CURRENCY must be a three-letter ISO code")

    return CheckoutConfig(
        default_gateway=_to_gateway(env_mapping.get("CHECKOUT_DEFAULT_GATEWAY")),
        stripe_secret_key=env_mapping.get("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=env_mapping.get("STRIPE_WEBHOOK_SECRET") or None,
        stripe_api_base=(env_mapping.get("STRIPE_API_BASE") or "https://api.stripe.com").rstrip("/"),
        currency=currency,
        post_payment_url=env_mapping.get("CHECKOUT_POST_PAYMENT_URL") or "/login",
        sandbox_latency_seconds=max(
            0.0, _to_float(env_mapping.get("CHECKOUT_SANDBOX_LATENCY_SECONDS"), default=2.0)
        ),
        session_ttl_seconds=max(
            60, _to_int(env_mapping.get("CHECKOUT_SESSION_TTL_SECONDS"), default=3600)
        ),
        http_timeout_seconds=max(
            1.0, _to_float(env_mapping.get("CHECKOUT_HTTP_TIMEOUT_SECONDS"), default=15.0)
        ),
        app_base_url=env_mapping.get("APP_BASE_URL", "http://localhost:5173").rstrip("/"),
    )


__all__ = ["CheckoutConfig", "load_checkout_config"]
