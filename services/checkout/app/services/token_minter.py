from __future__ import annotations

import logging
import math
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError

from packages.shared.schemas.checkout_v1 import GatewayOperationV1, TokenItemV1
from services.checkout.app.config import DEFAULT_SOURCE
from services.checkout.app.services.token_store import CheckoutTokenStore

logger = logging.getLogger(__name__)


def derive_token_items(operation: GatewayOperationV1, payload: dict[str, Any]) -> list[TokenItemV1]:
    """Build the item scope a checkout token is minted for.

    submit_payment works on an existing order and never yields items.
    """

    if operation is GatewayOperationV1.PREVIEW_QUOTE:
        body = payload.get("quote")
    elif operation is GatewayOperationV1.CREATE_ORDER:
        body = payload.get("order")
    else:
        return []

    if not isinstance(body, dict):
        return []
    raw_items = body.get("items")
    if not isinstance(raw_items, list):
        return []

    default_merchant = _text(body.get("merchant_id"))
    items: list[TokenItemV1] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        product_id = _text(raw.get("product_id"))
        merchant_id = _text(raw.get("merchant_id")) or default_merchant
        if not product_id or not merchant_id:
            continue
        items.append(
            TokenItemV1(
                product_id=product_id,
                merchant_id=merchant_id,
                variant_id=_text(raw.get("variant_id")) or None,
                sku=_text(raw.get("sku") or raw.get("variant_sku")) or None,
                quantity=_quantity(raw.get("quantity")),
            )
        )
    return items


class TokenMinter:
    """Obtains an item-scoped checkout token for the direct channel.

    Failures never surface: they only mean the direct channel is skipped for this call.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        session_url: str,
        store: CheckoutTokenStore,
        source: str = DEFAULT_SOURCE,
    ) -> None:
        self._http = http
        self._session_url = session_url
        self._store = store
        self._source = source

    async def ensure_token(
        self, operation: GatewayOperationV1, payload: dict[str, Any]
    ) -> str | None:
        try:
            existing = self._store.read()
        except SQLAlchemyError as e:
            logger.warning("Checkout token store unreadable: %s", type(e).__name__)
            return None
        if existing:
            return existing

        items = derive_token_items(operation, payload)
        if not items:
            return None
        return await self.mint(items)

    async def mint(self, items: list[TokenItemV1]) -> str | None:
        body = {
            "items": [item.model_dump(exclude_none=True) for item in items],
            "source": self._source,
        }
        try:
            response = await self._http.post(self._session_url, json=body)
        except httpx.HTTPError as e:
            logger.warning("Checkout token mint failed: %s: %s", type(e).__name__, e)
            return None

        if not response.is_success:
            logger.warning("Checkout token mint rejected: status=%s", response.status_code)
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning("Checkout token mint returned a non-JSON body")
            return None

        token = _text(data.get("checkout_token")) if isinstance(data, dict) else ""
        if not token:
            logger.warning("Checkout token mint response had no checkout_token")
            return None

        try:
            self._store.persist(token)
        except SQLAlchemyError as e:
            # The token is still good for this call; only reuse across calls is lost.
            logger.warning("Checkout token store unwritable: %s", type(e).__name__)
        logger.info("Minted checkout token for %d item(s)", len(items))
        return token


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _quantity(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(number) or number < 1:
        return 1
    return int(math.floor(number))
