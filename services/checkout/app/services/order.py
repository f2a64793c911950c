from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from packages.shared.schemas.checkout_v1 import (
    CartItemV1,
    GatewayOperationV1,
    OrderV1,
    ShippingAddressV1,
)
from services.checkout.app.config import DEFAULT_SOURCE
from services.checkout.app.services.errors import GatewayResponseError, build_model
from services.checkout.app.services.quote import QuoteService
from services.checkout.app.services.transport import TransportRouter
from services.checkout.app.services.validation import (
    shared_merchant_id,
    shared_offer_id,
    validate_cart_for_checkout,
)

logger = logging.getLogger(__name__)


def build_order_request(
    items: Sequence[CartItemV1],
    *,
    quote_id: str,
    shipping: ShippingAddressV1,
    email: str,
    discount_codes: Sequence[str] = (),
    notes: str | None = None,
    source: str = DEFAULT_SOURCE,
) -> dict[str, Any]:
    merchant_id = shared_merchant_id(items)

    lines: list[dict[str, Any]] = []
    for item in items:
        line: dict[str, Any] = {
            "merchant_id": merchant_id,
            "product_id": item.product_id,
            "product_title": item.title,
            "variant_id": item.variant_id,
            "quantity": item.quantity,
            "unit_price": item.price,
            "subtotal": round(item.price * item.quantity, 2),
        }
        if item.variant_sku:
            line["sku"] = item.variant_sku
        if item.selected_options:
            line["selected_options"] = dict(item.selected_options)
        lines.append(line)

    # Attribution follows the first line; a cart is checked out from one creator storefront.
    first = items[0]
    metadata: dict[str, Any] = {"source": source}
    if first.creator_id:
        metadata["creator_id"] = first.creator_id
    if first.creator_slug:
        metadata["creator_slug"] = first.creator_slug
    if first.creator_name:
        metadata["creator_name"] = first.creator_name

    order: dict[str, Any] = {
        "merchant_id": merchant_id,
        "quote_id": quote_id,
        "customer_email": email,
        "items": lines,
        "discount_codes": [code for code in discount_codes if code.strip()],
        "shipping_address": shipping.model_dump(exclude_none=True),
        "metadata": metadata,
    }
    offer_id = shared_offer_id(items)
    if offer_id:
        order["offer_id"] = offer_id
    if notes:
        order["customer_notes"] = notes
    return order


class OrderService:
    """Phase 2: commit a quote into a persisted order."""

    def __init__(
        self,
        router: TransportRouter,
        quotes: QuoteService,
        *,
        source: str = DEFAULT_SOURCE,
    ) -> None:
        self._router = router
        self._quotes = quotes
        self._source = source

    async def create_order_with_quote(
        self,
        *,
        quote_id: str,
        items: Sequence[CartItemV1],
        shipping: ShippingAddressV1,
        email: str,
        discount_codes: Sequence[str] = (),
        notes: str | None = None,
    ) -> OrderV1:
        # Re-checked here: callers may hold a quote_id that did not come from this process.
        validate_cart_for_checkout(items)

        request = build_order_request(
            items,
            quote_id=quote_id,
            shipping=shipping,
            email=email,
            discount_codes=discount_codes,
            notes=notes,
            source=self._source,
        )
        data = await self._router.invoke(GatewayOperationV1.CREATE_ORDER, {"order": request})

        if not (data.get("order_id") or data.get("id")):
            raise GatewayResponseError("Order was created but no order ID was returned.", body=data)

        order = build_model(OrderV1, data)
        logger.info("Created order %s from quote %s", order.order_id, quote_id)
        return order

    async def create_order_from_cart(
        self,
        *,
        items: Sequence[CartItemV1],
        shipping: ShippingAddressV1,
        email: str,
        discount_codes: Sequence[str] = (),
        notes: str | None = None,
    ) -> OrderV1:
        """Preview then create. Not atomic: a failed create leaves the quote unused."""

        quote = await self._quotes.preview_quote_from_cart(
            items=items, shipping=shipping, email=email, discount_codes=discount_codes
        )
        order = await self.create_order_with_quote(
            quote_id=quote.quote_id,
            items=items,
            shipping=shipping,
            email=email,
            discount_codes=discount_codes,
            notes=notes,
        )
        return order.model_copy(update={"quote": quote})
