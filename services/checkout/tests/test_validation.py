from __future__ import annotations

import pytest

from services.checkout.app.services.errors import CartValidationError
from services.checkout.app.services.validation import validate_cart_for_checkout


def test_empty_cart_is_rejected() -> None:
    with pytest.raises(CartValidationError) as exc:
        validate_cart_for_checkout([])

    assert exc.value.code == "EMPTY_CART"
    assert str(exc.value) == "Your cart is empty."


def test_multiple_merchants_are_rejected(make_item) -> None:
    items = [make_item(), make_item(id="line-2", merchant_id="m-2")]

    with pytest.raises(CartValidationError) as exc:
        validate_cart_for_checkout(items)

    assert exc.value.code == "MULTIPLE_MERCHANTS"
    assert "remove items from other sellers" in str(exc.value)


def test_multiple_offers_are_rejected(make_item) -> None:
    items = [make_item(offer_id="of-1"), make_item(id="line-2", offer_id="of-2")]

    with pytest.raises(CartValidationError) as exc:
        validate_cart_for_checkout(items)

    assert exc.value.code == "MULTIPLE_OFFERS"


def test_items_without_offer_do_not_conflict_with_one_offer(make_item) -> None:
    validate_cart_for_checkout([make_item(offer_id="of-1"), make_item(id="line-2")])


def test_missing_variant_names_first_three_titles(make_item) -> None:
    items = [
        make_item(id=f"line-{n}", title=title, variant_id=None)
        for n, title in enumerate(["A", "B", "C", "D"])
    ]

    with pytest.raises(CartValidationError) as exc:
        validate_cart_for_checkout(items)

    assert exc.value.code == "VARIANT_REQUIRED"
    assert str(exc.value) == "Please choose a size or color before checkout for: A, B, C and more"


def test_exactly_three_missing_variants_has_no_suffix(make_item) -> None:
    items = [
        make_item(id=f"line-{n}", title=title, variant_id=None)
        for n, title in enumerate(["A", "B", "C"])
    ]

    with pytest.raises(CartValidationError) as exc:
        validate_cart_for_checkout(items)

    assert str(exc.value) == "Please choose a size or color before checkout for: A, B, C"


def test_blank_variant_counts_as_missing(make_item) -> None:
    with pytest.raises(CartValidationError) as exc:
        validate_cart_for_checkout([make_item(variant_id="   ")])

    assert exc.value.code == "VARIANT_REQUIRED"


def test_merchant_check_runs_before_variant_check(make_item) -> None:
    items = [make_item(variant_id=None), make_item(id="line-2", merchant_id="m-2")]

    with pytest.raises(CartValidationError) as exc:
        validate_cart_for_checkout(items)

    assert exc.value.code == "MULTIPLE_MERCHANTS"


def test_valid_single_merchant_cart_passes(make_item) -> None:
    validate_cart_for_checkout([make_item(), make_item(id="line-2", product_id="prod-2")])
