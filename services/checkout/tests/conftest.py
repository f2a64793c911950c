from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from packages.shared.schemas.checkout_v1 import CartItemV1, ShippingAddressV1


@pytest.fixture(autouse=True)
def _fresh_process_state(monkeypatch: pytest.MonkeyPatch) -> None:
    import services.checkout.app.services.client_factory as client_factory
    import services.checkout.app.services.store as store_module
    from services.checkout.app.services.token_store import InMemoryKeyValueStore

    monkeypatch.setattr(client_factory, "_SESSION_TIER", InMemoryKeyValueStore())
    monkeypatch.setattr(client_factory, "_MEMORY_DURABLE_TIER", InMemoryKeyValueStore())
    monkeypatch.setattr(store_module, "store", store_module.InMemoryAttemptStore())


@pytest.fixture()
def make_item() -> Callable[..., CartItemV1]:
    def _make(**overrides: Any) -> CartItemV1:
        data: dict[str, Any] = {
            "id": "line-1",
            "title": "Linen Shirt",
            "product_id": "prod-1",
            "merchant_id": "m-1",
            "variant_id": "var-1",
            "variant_sku": "SKU-1",
            "price": 25.0,
            "quantity": 1,
            "currency": "USD",
        }
        data.update(overrides)
        return CartItemV1.model_validate(data)

    return _make


@pytest.fixture()
def shipping() -> ShippingAddressV1:
    return ShippingAddressV1(
        name="Ada Buyer",
        address_line1="1 Main St",
        city="Springfield",
        province="IL",
        country="US",
        postal_code="62701",
    )
