"""Merchant configuration, read from ACP_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ShippingRate:
    id: str
    title: str
    amount: int  # in minor units
    scope: str = "domestic"  # "domestic" | "international"
    subtitle: str = ""
    carrier: str = ""


DEFAULT_SHIPPING_RATES = (
    ShippingRate(
        id="ship_std",
        title="Standard Shipping",
        subtitle="5-7 business days",
        carrier="UPS",
        amount=799,
    ),
    ShippingRate(
        id="ship_exp",
        title="Express Shipping",
        subtitle="2-3 business days",
        carrier="FedEx",
        amount=1499,
    ),
    ShippingRate(
        id="ship_intl",
        title="International Shipping",
        subtitle="7-14 business days",
        carrier="DHL",
        amount=2999,
        scope="international",
    ),
)


def _env_set(name: str, default: str) -> frozenset[str]:
    return frozenset(v.strip() for v in os.getenv(name, default).split(",") if v.strip())


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite+aiosqlite:///./acp_checkout.db"
    supported_api_versions: frozenset[str] = frozenset({"2026-01-16"})
    # Empty means any bearer token is accepted.
    api_keys: frozenset[str] = frozenset()
    signature_secret: str = ""
    signature_tolerance_seconds: int = 300
    require_idempotency_key: bool = True
    idempotency_ttl_seconds: int = 24 * 60 * 60
    merchant_id: str = "acp_merchant"
    merchant_country: str = "US"
    currency: str = "usd"
    payment_provider: str = "stripe"
    tax_rate_bps: int = 800
    fulfillment_tax_rate_bps: int = 0
    three_ds_mode: str = "threshold"
    three_ds_threshold: int = 100_000
    three_ds_version: str = "2.2.0"
    challenge_base_url: str = "https://merchant.example.com/3ds"
    order_base_url: str = "https://merchant.example.com/orders"
    terms_of_use_url: str = "https://merchant.example.com/terms"
    privacy_policy_url: str = "https://merchant.example.com/privacy"
    return_policy_url: str = ""
    shipping_rates: tuple[ShippingRate, ...] = field(default=DEFAULT_SHIPPING_RATES)

    @classmethod
    def from_env(cls) -> Settings:
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            supported_api_versions=_env_set("ACP_SUPPORTED_API_VERSIONS", "2026-01-16"),
            api_keys=_env_set("ACP_API_KEYS", ""),
            signature_secret=os.getenv("ACP_SIGNATURE_SECRET", ""),
            signature_tolerance_seconds=_env_int(
                "ACP_SIGNATURE_TOLERANCE_SECONDS", defaults.signature_tolerance_seconds
            ),
            require_idempotency_key=_env_bool(
                "ACP_REQUIRE_IDEMPOTENCY_KEY", defaults.require_idempotency_key
            ),
            idempotency_ttl_seconds=_env_int(
                "ACP_IDEMPOTENCY_TTL_SECONDS", defaults.idempotency_ttl_seconds
            ),
            merchant_id=os.getenv("ACP_MERCHANT_ID", defaults.merchant_id),
            merchant_country=os.getenv("ACP_MERCHANT_COUNTRY", defaults.merchant_country).upper(),
            currency=os.getenv("ACP_CURRENCY", defaults.currency).lower(),
            payment_provider=os.getenv("ACP_PAYMENT_PROVIDER", defaults.payment_provider),
            tax_rate_bps=_env_int("ACP_TAX_RATE_BPS", defaults.tax_rate_bps),
            fulfillment_tax_rate_bps=_env_int(
                "ACP_FULFILLMENT_TAX_RATE_BPS", defaults.fulfillment_tax_rate_bps
            ),
            three_ds_mode=os.getenv("ACP_3DS_MODE", defaults.three_ds_mode).lower(),
            three_ds_threshold=_env_int("ACP_3DS_THRESHOLD", defaults.three_ds_threshold),
            challenge_base_url=os.getenv("ACP_CHALLENGE_BASE_URL", defaults.challenge_base_url),
            order_base_url=os.getenv("ACP_ORDER_BASE_URL", defaults.order_base_url),
            terms_of_use_url=os.getenv("ACP_TERMS_OF_USE_URL", defaults.terms_of_use_url),
            privacy_policy_url=os.getenv("ACP_PRIVACY_POLICY_URL", defaults.privacy_policy_url),
            return_policy_url=os.getenv("ACP_RETURN_POLICY_URL", defaults.return_policy_url),
        )
