from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from packages.shared.schemas.checkout_v1 import (
    CartItemV1,
    GatewayOperationV1,
    QuoteV1,
    ShippingAddressV1,
)
from services.checkout.app.services.errors import build_model
from services.checkout.app.services.transport import TransportRouter
from services.checkout.app.services.validation import (
    shared_merchant_id,
    shared_offer_id,
    validate_cart_for_checkout,
)

logger = logging.getLogger(__name__)


def build_quote_request(
    items: Sequence[CartItemV1],
    *,
    shipping: ShippingAddressV1,
    email: str,
    discount_codes: Sequence[str] = (),
) -> dict[str, Any]:
    request: dict[str, Any] = {
        "merchant_id": shared_merchant_id(items),
        "items": [
            {
                "product_id": item.product_id,
                "variant_id": item.variant_id,
                "quantity": item.quantity,
            }
            for item in items
        ],
        "discount_codes": [code for code in discount_codes if code.strip()],
        "customer_email": email,
        "shipping_address": shipping.model_dump(exclude_none=True),
    }
    offer_id = shared_offer_id(items)
    if offer_id:
        request["offer_id"] = offer_id
    return request


class QuoteService:
    """Phase 1: a price-locked, time-bounded quote for the cart.

    The quote's expires_at is returned as-is; callers re-preview when it lapses.
    """

    def __init__(self, router: TransportRouter) -> None:
        self._router = router

    async def preview_quote_from_cart(
        self,
        *,
        items: Sequence[CartItemV1],
        shipping: ShippingAddressV1,
        email: str,
        discount_codes: Sequence[str] = (),
    ) -> QuoteV1:
        validate_cart_for_checkout(items)

        request = build_quote_request(
            items, shipping=shipping, email=email, discount_codes=discount_codes
        )
        data = await self._router.invoke(GatewayOperationV1.PREVIEW_QUOTE, {"quote": request})
        quote = build_model(QuoteV1, data)

        logger.info("Previewed quote %s total=%s", quote.quote_id, quote.pricing.total)
        return quote
