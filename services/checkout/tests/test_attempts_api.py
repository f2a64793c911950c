from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from services.checkout.tests.fakes import envelope, happy_gateway


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'attempts.db'}")
    monkeypatch.setenv("CHECKOUT_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("CHECKOUT_ATTEMPT_STORE", "sql")
    monkeypatch.setenv("CHECKOUT_DIRECT_INVOKE", "false")

    from services.checkout.app.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def gateway(monkeypatch: pytest.MonkeyPatch) -> Callable[[Callable], None]:
    import services.checkout.app.routers.attempts as attempts_router
    from services.checkout.app.services import client_factory

    def _install(handler: Callable[[httpx.Request], httpx.Response]) -> None:
        monkeypatch.setattr(
            attempts_router,
            "get_checkout_client",
            lambda: client_factory.get_checkout_client(transport=httpx.MockTransport(handler)),
        )

    return _install


def _payload(**item_overrides) -> dict:
    item = {
        "id": "line-1",
        "title": "Linen Shirt",
        "product_id": "prod-1",
        "merchant_id": "m-1",
        "variant_id": "var-1",
        "price": 25.0,
        "quantity": 1,
    }
    item.update(item_overrides)
    return {
        "items": [item],
        "shipping": {
            "name": "Ada Buyer",
            "address_line1": "1 Main St",
            "city": "Springfield",
            "country": "US",
            "postal_code": "62701",
        },
        "email": "ada@example.com",
    }


def test_attempt_checkout_then_payment(client: TestClient, gateway) -> None:
    gateway(happy_gateway)

    created = client.post("/v1/checkout/attempts", json=_payload())
    assert created.status_code == 200
    attempt = created.json()
    assert attempt["state"] == "ORDERED"
    assert attempt["quote_id"] == "q_123"
    assert attempt["quote_state"] == "CONSUMED"
    assert attempt["quote_total"] == 54.0
    assert attempt["order_id"] == "ord_1"

    paid = client.post(f"/v1/checkout/attempts/{attempt['attempt_id']}/payment", json={})
    assert paid.status_code == 200
    body = paid.json()
    assert body["attempt"]["state"] == "PAID"
    assert body["psp"] == "stripe"

    detail = client.get(f"/v1/checkout/attempts/{attempt['attempt_id']}")
    assert detail.status_code == 200
    d = detail.json()
    assert d["items"][0]["product_id"] == "prod-1"
    assert {e["event_type"] for e in d["events"]} == {
        "ATTEMPT_STARTED",
        "QUOTE_ISSUED",
        "ORDER_CREATED",
        "PAYMENT_SUBMITTED",
    }


def test_invalid_cart_is_422_with_code(client: TestClient, gateway) -> None:
    gateway(happy_gateway)

    response = client.post("/v1/checkout/attempts", json=_payload(variant_id=None))

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "VARIANT_REQUIRED"
    assert detail["retryable"] is False
    assert detail["attempt_id"]


def test_quote_expired_is_502_retryable_then_requote_and_order(client: TestClient, gateway) -> None:
    state = {"expired_once": False}

    def handler(request: httpx.Request) -> httpx.Response:
        if envelope(request)["operation"] == "create_order" and not state["expired_once"]:
            state["expired_once"] = True
            return httpx.Response(
                409, json={"detail": {"code": "QUOTE_EXPIRED", "message": "stale", "debug_id": "d-1"}}
            )
        return happy_gateway(request)

    gateway(handler)

    failed = client.post("/v1/checkout/attempts", json=_payload())
    assert failed.status_code == 502
    detail = failed.json()["detail"]
    assert detail == {
        "code": "QUOTE_EXPIRED",
        "message": "stale",
        "debug_id": "d-1",
        "retryable": True,
        "attempt_id": detail["attempt_id"],
    }
    attempt_id = detail["attempt_id"]

    stale_order = client.post(f"/v1/checkout/attempts/{attempt_id}/order")
    assert stale_order.status_code == 409
    assert stale_order.json()["detail"]["code"] == "QUOTE_EXPIRED"

    requoted = client.post(f"/v1/checkout/attempts/{attempt_id}/quote")
    assert requoted.status_code == 200
    assert requoted.json()["quote_state"] == "ISSUED"

    ordered = client.post(f"/v1/checkout/attempts/{attempt_id}/order")
    assert ordered.status_code == 200
    assert ordered.json()["state"] == "ORDERED"


def test_payment_before_order_is_409(client: TestClient, gateway) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if envelope(request)["operation"] == "create_order":
            return httpx.Response(422, json={"detail": {"code": "OUT_OF_STOCK"}})
        return happy_gateway(request)

    gateway(handler)

    failed = client.post("/v1/checkout/attempts", json=_payload())
    assert failed.status_code == 502
    attempt_id = failed.json()["detail"]["attempt_id"]

    response = client.post(f"/v1/checkout/attempts/{attempt_id}/payment", json={})
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "ATTEMPT_STATE_CONFLICT"

    detail = client.get(f"/v1/checkout/attempts/{attempt_id}").json()
    assert detail["state"] == "QUOTED"
    assert detail["last_error_code"] == "OUT_OF_STOCK"


def test_gateway_unreachable_is_503(client: TestClient, gateway) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    gateway(handler)

    response = client.post("/v1/checkout/attempts", json=_payload())

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "GATEWAY_UNAVAILABLE"


def test_unknown_attempt_is_404(client: TestClient, gateway) -> None:
    gateway(happy_gateway)

    missing = client.get("/v1/checkout/attempts/nope")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "ATTEMPT_NOT_FOUND"
    assert missing.json()["detail"]["attempt_id"] == "nope"
    assert client.post("/v1/checkout/attempts/nope/order").status_code == 404


def test_unknown_token_store_is_500(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHECKOUT_TOKEN_STORE", "redis")

    response = client.post("/v1/checkout/attempts", json=_payload())

    assert response.status_code == 500
