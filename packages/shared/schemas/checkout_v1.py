"""Shared checkout wire schema (v1).

Both the browser-side pipeline and the backend proxy speak these shapes. Monetary values are
major-unit floats; the gateway is the source of truth for every total.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GatewayOperationV1(str, Enum):
    PREVIEW_QUOTE = "preview_quote"
    CREATE_ORDER = "create_order"
    SUBMIT_PAYMENT = "submit_payment"


class CartItemV1(BaseModel):
    """Read-only snapshot of one cart line, owned by the cart store."""

    id: str
    title: str
    product_id: str
    merchant_id: str
    offer_id: str | None = None
    variant_id: str | None = None
    variant_sku: str | None = None
    selected_options: dict[str, str] = Field(default_factory=dict)
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    currency: str = "USD"

    creator_id: str | None = None
    creator_slug: str | None = None
    creator_name: str | None = None
    deal_id: str | None = None


class ShippingAddressV1(BaseModel):
    name: str
    address_line1: str
    address_line2: str | None = None
    city: str
    province: str | None = None
    country: str
    postal_code: str
    phone: str | None = None


class PricingV1(BaseModel):
    model_config = ConfigDict(extra="allow")

    subtotal: float = 0.0
    discount_total: float = 0.0
    shipping_fee: float = 0.0
    tax: float = 0.0
    total: float | None = None


class QuoteV1(BaseModel):
    model_config = ConfigDict(extra="allow")

    quote_id: str = Field(..., min_length=1)
    expires_at: datetime | None = None
    engine: str | None = None

    currency: str | None = None
    presentment_currency: str | None = None
    charge_currency: str | None = None
    settlement_currency: str | None = None

    pricing: PricingV1 = Field(default_factory=PricingV1)
    promotion_lines: list[dict[str, Any]] = Field(default_factory=list)
    line_items: list[dict[str, Any]] = Field(default_factory=list)
    delivery_options: list[dict[str, Any]] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def effective_currency(self) -> str | None:
        return _first_currency(self.charge_currency, self.presentment_currency, self.currency)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= (now or datetime.now(timezone.utc))


class OrderV1(BaseModel):
    model_config = ConfigDict(extra="allow")

    order_id: str = Field(..., min_length=1)
    payment_status: str | None = None

    currency: str | None = None
    presentment_currency: str | None = None
    charge_currency: str | None = None

    pricing: PricingV1 | None = None
    promotion_lines: list[dict[str, Any]] = Field(default_factory=list)
    line_items: list[dict[str, Any]] = Field(default_factory=list)

    # Either the server-embedded quote metadata or the QuoteV1 this order was created from.
    quote: QuoteV1 | dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_id_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("order_id") and data.get("id"):
            data = {**data, "order_id": data["id"]}
        return data

    def effective_currency(self) -> str | None:
        quote_meta: dict[str, Any] = {}
        if isinstance(self.quote, QuoteV1):
            quote_meta = self.quote.model_dump()
        elif isinstance(self.quote, dict):
            quote_meta = self.quote

        return _first_currency(
            self.charge_currency,
            self.presentment_currency,
            self.currency,
            quote_meta.get("charge_currency"),
            quote_meta.get("presentment_currency"),
            quote_meta.get("currency"),
        )


class PaymentActionV1(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str | None = None
    url: str | None = None
    client_secret: str | None = None


class PaymentResultV1(BaseModel):
    payment_status: str | None = None
    redirect_url: str | None = None
    payment_action: PaymentActionV1 | None = None
    psp: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def client_secret(self) -> str | None:
        if self.payment_action is None:
            return None
        return self.payment_action.client_secret or None


class TokenItemV1(BaseModel):
    product_id: str
    merchant_id: str
    variant_id: str | None = None
    sku: str | None = None
    quantity: int = Field(1, ge=1)


def _first_currency(*values: Any) -> str | None:
    for value in values:
        if value is None:
            continue
        code = str(value).strip().upper()
        if code:
            return code
    return None
