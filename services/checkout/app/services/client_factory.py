from __future__ import annotations

import httpx

from services.checkout.app.config import ClientConfig
from services.checkout.app.services.client import CheckoutClient
from services.checkout.app.services.token_minter import TokenMinter
from services.checkout.app.services.token_store import (
    CheckoutTokenStore,
    InMemoryKeyValueStore,
    KeyValueStore,
)
from services.checkout.app.services.transport import TransportRouter

# Session tier is process-scoped, the equivalent of one browser tab.
_SESSION_TIER = InMemoryKeyValueStore()
_MEMORY_DURABLE_TIER = InMemoryKeyValueStore()


def get_durable_tier(cfg: ClientConfig) -> KeyValueStore:
    if cfg.token_store == "memory":
        return _MEMORY_DURABLE_TIER

    if cfg.token_store == "sql":
        from services.checkout.app.db.database import session_scope
        from services.checkout.app.services.token_store import SqlKeyValueStore

        return SqlKeyValueStore(session_scope)

    raise ValueError(f"Unknown CHECKOUT_TOKEN_STORE={cfg.token_store!r}. Expected memory or sql.")


def get_checkout_client(transport: httpx.AsyncBaseTransport | None = None) -> CheckoutClient:
    """Build a checkout client from env vars.

    The direct channel stays off unless CHECKOUT_DIRECT_INVOKE is set and CHECKOUT_GATEWAY_URL
    is configured, so local dev always goes through the proxy.
    """

    cfg = ClientConfig.from_env()
    token_store = CheckoutTokenStore(_SESSION_TIER, get_durable_tier(cfg))

    http = httpx.AsyncClient(timeout=cfg.timeout_seconds, transport=transport)
    minter = TokenMinter(
        http=http,
        session_url=cfg.session_url,
        store=token_store,
        source=cfg.source,
    )
    router = TransportRouter(
        http=http,
        proxy_url=cfg.proxy_url,
        gateway_url=cfg.gateway_url,
        direct_invoke_enabled=cfg.direct_invoke_enabled,
        minter=minter,
    )
    return CheckoutClient(http=http, router=router, token_store=token_store, source=cfg.source)
