from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from packages.shared.schemas.checkout_v1 import (
    CartItemV1,
    PaymentActionV1,
    ShippingAddressV1,
)
from packages.shared.schemas.events import EventV1


class AttemptCreateRequest(BaseModel):
    # No min_length: an empty cart is rejected by checkout validation with its own message.
    items: list[CartItemV1]
    shipping: ShippingAddressV1
    email: str = Field(..., min_length=3)
    discount_codes: list[str] = Field(default_factory=list)
    notes: str | None = None


class PaymentRequest(BaseModel):
    payment_method_hint: str | None = None
    return_url: str | None = None


class AttemptView(BaseModel):
    attempt_id: str
    state: str

    quote_id: str | None = None
    quote_state: str | None = None
    quote_expires_at: datetime | None = None
    quote_total: float | None = None

    order_id: str | None = None
    order_total: float | None = None
    order_currency: str | None = None
    payment_status: str | None = None

    last_error_code: str | None = None
    last_error_message: str | None = None


class AttemptDetail(AttemptView):
    items: list[dict[str, Any]]
    events: list[EventV1]


class PaymentResponse(BaseModel):
    attempt: AttemptView
    payment_status: str | None = None
    redirect_url: str | None = None
    payment_action: PaymentActionV1 | None = None
    psp: str | None = None
