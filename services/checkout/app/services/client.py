from __future__ import annotations

from collections.abc import Sequence

import httpx

from packages.shared.schemas.checkout_v1 import (
    CartItemV1,
    OrderV1,
    PaymentResultV1,
    QuoteV1,
    ShippingAddressV1,
)
from services.checkout.app.config import DEFAULT_SOURCE
from services.checkout.app.services.order import OrderService
from services.checkout.app.services.payment import PaymentService
from services.checkout.app.services.quote import QuoteService
from services.checkout.app.services.token_store import CheckoutTokenStore
from services.checkout.app.services.transport import TransportRouter


class CheckoutClient:
    """The quote -> order -> payment pipeline over a single transport router.

    Owns the httpx client it was built with; use it as an async context manager.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        router: TransportRouter,
        token_store: CheckoutTokenStore | None = None,
        source: str = DEFAULT_SOURCE,
    ) -> None:
        self._http = http
        self.router = router
        self.token_store = token_store
        self.quotes = QuoteService(router)
        self.orders = OrderService(router, self.quotes, source=source)
        self.payments = PaymentService(router)

    async def __aenter__(self) -> "CheckoutClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def preview_quote_from_cart(
        self,
        *,
        items: Sequence[CartItemV1],
        shipping: ShippingAddressV1,
        email: str,
        discount_codes: Sequence[str] = (),
    ) -> QuoteV1:
        return await self.quotes.preview_quote_from_cart(
            items=items, shipping=shipping, email=email, discount_codes=discount_codes
        )

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
        return await self.orders.create_order_with_quote(
            quote_id=quote_id,
            items=items,
            shipping=shipping,
            email=email,
            discount_codes=discount_codes,
            notes=notes,
        )

    async def create_order_from_cart(
        self,
        *,
        items: Sequence[CartItemV1],
        shipping: ShippingAddressV1,
        email: str,
        discount_codes: Sequence[str] = (),
        notes: str | None = None,
    ) -> OrderV1:
        return await self.orders.create_order_from_cart(
            items=items,
            shipping=shipping,
            email=email,
            discount_codes=discount_codes,
            notes=notes,
        )

    async def submit_payment_for_order(
        self,
        *,
        order_id: str,
        expected_amount: float,
        currency: str,
        payment_method_hint: str | None = None,
        return_url: str | None = None,
    ) -> PaymentResultV1:
        return await self.payments.submit_payment_for_order(
            order_id=order_id,
            expected_amount=expected_amount,
            currency=currency,
            payment_method_hint=payment_method_hint,
            return_url=return_url,
        )
