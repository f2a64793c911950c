from __future__ import annotations

import argparse
import asyncio
import json
import os

from packages.shared.schemas.checkout_v1 import CartItemV1, ShippingAddressV1
from services.checkout.app.services.client_factory import get_checkout_client
from services.checkout.app.services.errors import CheckoutError, parse_gateway_error


async def _run(args: argparse.Namespace) -> int:
    item = CartItemV1(
        id="smoke-1",
        title=args.title,
        product_id=args.product_id,
        merchant_id=args.merchant_id,
        variant_id=args.variant_id,
        price=args.price,
        quantity=args.quantity,
    )
    shipping = ShippingAddressV1(
        name="Smoke Test",
        address_line1="1 Test St",
        city="San Francisco",
        province="CA",
        country=args.country,
        postal_code=args.postal_code,
    )

    async with get_checkout_client() as client:
        if client.token_store is not None and args.landing_url:
            client.token_store.capture_from_query(args.landing_url)

        try:
            quote = await client.preview_quote_from_cart(
                items=[item], shipping=shipping, email=args.email
            )
            print(f"quote {quote.quote_id} total={quote.pricing.total} {quote.effective_currency()}")

            if args.quote_only:
                return 0

            order = await client.create_order_with_quote(
                quote_id=quote.quote_id, items=[item], shipping=shipping, email=args.email
            )
            total = order.pricing.total if order.pricing is not None else None
            if total is None:
                total = quote.pricing.total
            currency = order.effective_currency() or quote.effective_currency() or "USD"
            print(f"order {order.order_id} total={total} {currency}")

            if not args.pay:
                return 0
            if total is None:
                print("checkout failed: order and quote carry no total to guard the payment")
                return 1

            result = await client.submit_payment_for_order(
                order_id=order.order_id, expected_amount=total, currency=currency
            )
            print(json.dumps(result.model_dump(exclude={"raw"}), indent=2))
        except CheckoutError as e:
            print(f"checkout failed: {parse_gateway_error(e).display()}")
            return 1

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Run a single-item quote -> order (-> payment) against the configured gateway"
    )
    parser.add_argument("--merchant-id", required=True)
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--variant-id", required=True)
    parser.add_argument("--title", default="Smoke test item")
    parser.add_argument("--price", type=float, default=1.0)
    parser.add_argument("--quantity", type=int, default=1)
    parser.add_argument("--email", default=os.getenv("CHECKOUT_SMOKE_EMAIL", "smoke@example.com"))
    parser.add_argument("--country", default="US")
    parser.add_argument("--postal-code", default="94105")
    parser.add_argument(
        "--landing-url",
        help="Storefront URL carrying checkout_token=..., captured before the first call",
    )
    parser.add_argument("--quote-only", action="store_true", help="Stop after preview_quote")
    parser.add_argument("--pay", action="store_true", help="Also submit payment for the order")

    args = parser.parse_args()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
