from __future__ import annotations

from collections.abc import Sequence

from packages.shared.schemas.checkout_v1 import CartItemV1
from services.checkout.app.services.errors import CartValidationError

MAX_NAMED_MISSING_VARIANTS = 3


def validate_cart_for_checkout(items: Sequence[CartItemV1]) -> None:
    """Pre-flight checks that must pass before any gateway call.

    Order matters: empty cart, then seller, then offer, then variant selection.
    """

    if not items:
        raise CartValidationError("Your cart is empty.", code="EMPTY_CART")

    merchant_ids = {item.merchant_id for item in items}
    if len(merchant_ids) > 1:
        raise CartValidationError(
            "Your cart contains items from more than one seller. "
            "Please remove items from other sellers and check out one seller at a time.",
            code="MULTIPLE_MERCHANTS",
        )

    offer_ids = {item.offer_id for item in items if item.offer_id}
    if len(offer_ids) > 1:
        raise CartValidationError(
            "Your cart contains items from more than one offer. "
            "Please remove items from other offers and check out one offer at a time.",
            code="MULTIPLE_OFFERS",
        )

    missing = [item.title for item in items if not (item.variant_id or "").strip()]
    if missing:
        named = ", ".join(missing[:MAX_NAMED_MISSING_VARIANTS])
        if len(missing) > MAX_NAMED_MISSING_VARIANTS:
            named += " and more"
        raise CartValidationError(
            f"Please choose a size or color before checkout for: {named}",
            code="VARIANT_REQUIRED",
        )


def shared_merchant_id(items: Sequence[CartItemV1]) -> str:
    return items[0].merchant_id


def shared_offer_id(items: Sequence[CartItemV1]) -> str | None:
    for item in items:
        if item.offer_id:
            return item.offer_id
    return None
