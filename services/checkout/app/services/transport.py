"""Channel routing for gateway operations.

A call is planned as an ordered list of channels. Each channel decides which of its own failures
may fall through to the next one; the last channel's failures are always terminal.

- direct: storefront -> gateway, authorized by an item-scoped checkout token.
- proxy: storefront -> backend -> gateway, the backend attaches its own credentials.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from packages.shared.schemas.checkout_v1 import GatewayOperationV1
from services.checkout.app.services.errors import (
    GatewayError,
    GatewayResponseError,
    GatewayUnavailableError,
)
from services.checkout.app.services.token_minter import TokenMinter

logger = logging.getLogger(__name__)

DIRECT_ELIGIBLE_OPERATIONS = frozenset(GatewayOperationV1)
FALL_THROUGH_STATUSES = frozenset({401, 403})


class Channel(Protocol):
    name: str

    async def send(self, envelope: dict[str, Any]) -> httpx.Response: ...

    def falls_through_on_status(self, status_code: int) -> bool: ...

    def falls_through_on_error(self, error: httpx.TransportError) -> bool: ...


class DirectInvokeChannel:
    name = "direct"

    def __init__(self, http: httpx.AsyncClient, gateway_url: str, checkout_token: str) -> None:
        self._http = http
        self._gateway_url = gateway_url
        self._checkout_token = checkout_token

    async def send(self, envelope: dict[str, Any]) -> httpx.Response:
        return await self._http.post(
            self._gateway_url,
            json=envelope,
            headers={"X-Checkout-Token": self._checkout_token},
        )

    def falls_through_on_status(self, status_code: int) -> bool:
        # Token rejected or out of scope; the proxy can still authorize the call.
        return status_code in FALL_THROUGH_STATUSES

    def falls_through_on_error(self, error: httpx.TransportError) -> bool:
        return True


class ProxyInvokeChannel:
    name = "proxy"

    def __init__(self, http: httpx.AsyncClient, proxy_url: str) -> None:
        self._http = http
        self._proxy_url = proxy_url

    async def send(self, envelope: dict[str, Any]) -> httpx.Response:
        return await self._http.post(self._proxy_url, json=envelope)

    def falls_through_on_status(self, status_code: int) -> bool:
        return False

    def falls_through_on_error(self, error: httpx.TransportError) -> bool:
        return False


class TransportRouter:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        proxy_url: str,
        gateway_url: str = "",
        direct_invoke_enabled: bool = False,
        minter: TokenMinter | None = None,
    ) -> None:
        self._http = http
        self._proxy = ProxyInvokeChannel(http, proxy_url)
        self._gateway_url = gateway_url
        self._direct_invoke_enabled = direct_invoke_enabled
        self._minter = minter

    def direct_eligible(self, operation: GatewayOperationV1) -> bool:
        return (
            self._direct_invoke_enabled
            and bool(self._gateway_url)
            and self._minter is not None
            and operation in DIRECT_ELIGIBLE_OPERATIONS
        )

    async def plan(self, operation: GatewayOperationV1, payload: dict[str, Any]) -> list[Channel]:
        channels: list[Channel] = []
        if self.direct_eligible(operation):
            assert self._minter is not None
            token = await self._minter.ensure_token(operation, payload)
            if token:
                channels.append(DirectInvokeChannel(self._http, self._gateway_url, token))
        channels.append(self._proxy)
        return channels

    async def invoke(self, operation: GatewayOperationV1, payload: dict[str, Any]) -> dict[str, Any]:
        envelope = {"operation": operation.value, "payload": payload}
        channels = await self.plan(operation, payload)

        for index, channel in enumerate(channels):
            is_last = index == len(channels) - 1

            try:
                response = await channel.send(envelope)
            except httpx.TransportError as e:
                if not is_last and channel.falls_through_on_error(e):
                    logger.info(
                        "%s via %s failed (%s); falling back", operation.value, channel.name, type(e).__name__
                    )
                    continue
                raise GatewayUnavailableError(operation.value, channel.name, str(e) or type(e).__name__) from e

            if response.is_success:
                return _success_body(response, operation)

            if not is_last and channel.falls_through_on_status(response.status_code):
                logger.info(
                    "%s via %s returned %s; falling back",
                    operation.value,
                    channel.name,
                    response.status_code,
                )
                continue

            raise GatewayError(
                response.status_code,
                read_body(response),
                operation=operation.value,
                channel=channel.name,
            )

        raise AssertionError("transport plan always ends with the proxy channel")


def read_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


def _success_body(response: httpx.Response, operation: GatewayOperationV1) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise GatewayResponseError(
            f"{operation.value} returned a non-JSON body", body=response.text
        ) from e
    if not isinstance(data, dict):
        raise GatewayResponseError(f"{operation.value} returned a non-object body", body=data)
    return data
