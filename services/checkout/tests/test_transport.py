from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from packages.shared.schemas.checkout_v1 import GatewayOperationV1
from services.checkout.app.services.errors import (
    GatewayError,
    GatewayResponseError,
    GatewayUnavailableError,
)
from services.checkout.app.services.token_minter import TokenMinter
from services.checkout.app.services.token_store import CheckoutTokenStore, InMemoryKeyValueStore
from services.checkout.app.services.transport import TransportRouter
from services.checkout.tests.fakes import GATEWAY_URL, PROXY_URL, SESSION_URL, envelope

QUOTE_PAYLOAD = {
    "quote": {"merchant_id": "m-1", "items": [{"product_id": "p-1", "variant_id": "v-1", "quantity": 1}]}
}


class Recorder:
    """Routes requests by URL and remembers which endpoints were hit."""

    def __init__(
        self,
        *,
        gateway: Callable[[httpx.Request], httpx.Response] | None = None,
        proxy: Callable[[httpx.Request], httpx.Response] | None = None,
        session: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> None:
        self.hits: list[str] = []
        self._gateway = gateway or (lambda r: httpx.Response(200, json={"via": "direct"}))
        self._proxy = proxy or (lambda r: httpx.Response(200, json={"via": "proxy"}))
        self._session = session or (lambda r: httpx.Response(200, json={"checkout_token": "tok-1"}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == GATEWAY_URL:
            self.hits.append("direct")
            return self._gateway(request)
        if url == PROXY_URL:
            self.hits.append("proxy")
            return self._proxy(request)
        if url == SESSION_URL:
            self.hits.append("mint")
            return self._session(request)
        raise AssertionError(f"unexpected URL {url}")


def _router(http: httpx.AsyncClient, *, direct: bool = True) -> TransportRouter:
    tokens = CheckoutTokenStore(InMemoryKeyValueStore(), InMemoryKeyValueStore())
    minter = TokenMinter(http=http, session_url=SESSION_URL, store=tokens)
    return TransportRouter(
        http=http,
        proxy_url=PROXY_URL,
        gateway_url=GATEWAY_URL,
        direct_invoke_enabled=direct,
        minter=minter,
    )


@pytest.mark.asyncio
async def test_direct_success_skips_proxy() -> None:
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        data = await _router(http).invoke(GatewayOperationV1.PREVIEW_QUOTE, QUOTE_PAYLOAD)

    assert data == {"via": "direct"}
    assert recorder.hits == ["mint", "direct"]


@pytest.mark.asyncio
async def test_direct_request_carries_token_and_envelope() -> None:
    seen: list[httpx.Request] = []

    def gateway(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    async with httpx.AsyncClient(transport=httpx.MockTransport(Recorder(gateway=gateway))) as http:
        await _router(http).invoke(GatewayOperationV1.PREVIEW_QUOTE, QUOTE_PAYLOAD)

    assert seen[0].headers["X-Checkout-Token"] == "tok-1"
    assert envelope(seen[0]) == {"operation": "preview_quote", "payload": QUOTE_PAYLOAD}


@pytest.mark.parametrize("status", [401, 403])
@pytest.mark.asyncio
async def test_direct_auth_rejection_falls_back_to_proxy(status: int) -> None:
    recorder = Recorder(gateway=lambda r: httpx.Response(status, json={"error": "FORBIDDEN"}))
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        data = await _router(http).invoke(GatewayOperationV1.PREVIEW_QUOTE, QUOTE_PAYLOAD)

    assert data == {"via": "proxy"}
    assert recorder.hits == ["mint", "direct", "proxy"]


@pytest.mark.asyncio
async def test_direct_network_error_falls_back_to_proxy() -> None:
    def gateway(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    recorder = Recorder(gateway=gateway)
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        data = await _router(http).invoke(GatewayOperationV1.PREVIEW_QUOTE, QUOTE_PAYLOAD)

    assert data == {"via": "proxy"}
    assert recorder.hits == ["mint", "direct", "proxy"]


@pytest.mark.asyncio
async def test_direct_server_error_is_terminal() -> None:
    recorder = Recorder(
        gateway=lambda r: httpx.Response(500, json={"detail": {"code": "INTERNAL", "message": "x"}})
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        with pytest.raises(GatewayError) as exc:
            await _router(http).invoke(GatewayOperationV1.PREVIEW_QUOTE, QUOTE_PAYLOAD)

    assert exc.value.status_code == 500
    assert exc.value.channel == "direct"
    assert exc.value.code == "INTERNAL"
    assert "proxy" not in recorder.hits


@pytest.mark.asyncio
async def test_direct_disabled_goes_straight_to_proxy() -> None:
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        data = await _router(http, direct=False).invoke(
            GatewayOperationV1.PREVIEW_QUOTE, QUOTE_PAYLOAD
        )

    assert data == {"via": "proxy"}
    assert recorder.hits == ["proxy"]


@pytest.mark.asyncio
async def test_no_items_means_no_token_and_proxy_only() -> None:
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        data = await _router(http).invoke(
            GatewayOperationV1.SUBMIT_PAYMENT, {"payment": {"order_id": "o-1"}}
        )

    assert data == {"via": "proxy"}
    assert recorder.hits == ["proxy"]


@pytest.mark.asyncio
async def test_failed_mint_means_proxy_only() -> None:
    recorder = Recorder(session=lambda r: httpx.Response(503, text="down"))
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        data = await _router(http).invoke(GatewayOperationV1.PREVIEW_QUOTE, QUOTE_PAYLOAD)

    assert data == {"via": "proxy"}
    assert recorder.hits == ["mint", "proxy"]


@pytest.mark.asyncio
async def test_proxy_error_keeps_status_and_body() -> None:
    recorder = Recorder(proxy=lambda r: httpx.Response(409, json={"detail": {"code": "QUOTE_EXPIRED"}}))
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        with pytest.raises(GatewayError) as exc:
            await _router(http, direct=False).invoke(GatewayOperationV1.CREATE_ORDER, {"order": {}})

    assert exc.value.status_code == 409
    assert exc.value.body == {"detail": {"code": "QUOTE_EXPIRED"}}
    assert exc.value.channel == "proxy"


@pytest.mark.asyncio
async def test_proxy_text_error_body_is_kept_as_text() -> None:
    recorder = Recorder(proxy=lambda r: httpx.Response(502, text="Bad Gateway"))
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        with pytest.raises(GatewayError) as exc:
            await _router(http, direct=False).invoke(GatewayOperationV1.CREATE_ORDER, {"order": {}})

    assert exc.value.body == "Bad Gateway"


@pytest.mark.asyncio
async def test_proxy_network_error_is_unavailable() -> None:
    def proxy(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(Recorder(proxy=proxy))) as http:
        with pytest.raises(GatewayUnavailableError) as exc:
            await _router(http, direct=False).invoke(GatewayOperationV1.CREATE_ORDER, {"order": {}})

    assert exc.value.channel == "proxy"
    assert exc.value.code == "GATEWAY_UNAVAILABLE"


@pytest.mark.asyncio
async def test_non_object_success_body_is_rejected() -> None:
    recorder = Recorder(proxy=lambda r: httpx.Response(200, json=[1, 2]))
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        with pytest.raises(GatewayResponseError):
            await _router(http, direct=False).invoke(GatewayOperationV1.CREATE_ORDER, {"order": {}})


class BrokenDurableTier:
    """Durable tier whose table is missing, as on a database that was never initialised."""

    def __init__(self, *, reads: bool = False, writes: bool = False) -> None:
        self._reads = reads
        self._writes = writes

    def _fail(self) -> None:
        raise OperationalError(
            "SELECT kv_entries.value FROM kv_entries", {}, Exception("no such table: kv_entries")
        )

    def get(self, key: str) -> str | None:
        if not self._reads:
            self._fail()
        return None

    def set(self, key: str, value: str) -> None:
        if not self._writes:
            self._fail()

    def delete(self, key: str) -> None:
        self._fail()


def _router_over(http: httpx.AsyncClient, durable: BrokenDurableTier) -> TransportRouter:
    tokens = CheckoutTokenStore(InMemoryKeyValueStore(), durable)
    minter = TokenMinter(http=http, session_url=SESSION_URL, store=tokens)
    return TransportRouter(
        http=http,
        proxy_url=PROXY_URL,
        gateway_url=GATEWAY_URL,
        direct_invoke_enabled=True,
        minter=minter,
    )


@pytest.mark.asyncio
async def test_unreadable_token_store_falls_back_to_proxy() -> None:
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        data = await _router_over(http, BrokenDurableTier()).invoke(
            GatewayOperationV1.PREVIEW_QUOTE, QUOTE_PAYLOAD
        )

    assert data == {"via": "proxy"}
    assert recorder.hits == ["proxy"]


@pytest.mark.asyncio
async def test_unwritable_token_store_still_uses_the_minted_token() -> None:
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as http:
        data = await _router_over(http, BrokenDurableTier(reads=True)).invoke(
            GatewayOperationV1.PREVIEW_QUOTE, QUOTE_PAYLOAD
        )

    assert data == {"via": "direct"}
    assert recorder.hits == ["mint", "direct"]
