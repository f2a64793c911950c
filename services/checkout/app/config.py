from __future__ import annotations

import os
import re
from dataclasses import dataclass

DEFAULT_SOURCE = "creator-agent-ui"

_SHOP_INVOKE_PATH = "/agent/shop/v1/invoke"
_CREATOR_INVOKE_PATH = "/agent/creator/v1/invoke"


def sanitize_env_value(raw: str | None) -> str:
    """Strip whitespace, stray CR/LF (literal or escaped) and wrapping quotes."""

    value = str(raw or "")
    for junk in ("\r", "\n", "\\r", "\\n"):
        value = value.replace(junk, "")
    value = value.strip()
    return re.sub(r"^['\"]+|['\"]+$", "", value).strip()


def first_env(*names: str, default: str = "") -> str:
    for name in names:
        value = sanitize_env_value(os.getenv(name))
        if value:
            return value
    return default


def normalize_invoke_url(raw_url: str) -> str:
    """Point creator-agent invoke URLs at the shop invoke endpoint used for checkout."""

    value = sanitize_env_value(raw_url)
    if not value or _SHOP_INVOKE_PATH in value:
        return value
    return value.replace(_CREATOR_INVOKE_PATH, _SHOP_INVOKE_PATH)


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Configuration for the browser-side pipeline (what the storefront ships with).

    Env vars:
    - CHECKOUT_PROXY_URL (default: http://localhost:8000/api/creator-agent/checkout/invoke)
    - CHECKOUT_SESSION_URL (default: http://localhost:8000/api/creator-agent/checkout/session)
    - CHECKOUT_GATEWAY_URL (direct channel target; empty disables the direct channel)
    - CHECKOUT_DIRECT_INVOKE (default: false)
    - CHECKOUT_TIMEOUT_SECONDS (default: 20)
    - CHECKOUT_TOKEN_STORE (memory | sql, default: memory)
    - CHECKOUT_SOURCE (default: creator-agent-ui)
    """

    proxy_url: str
    session_url: str
    gateway_url: str
    direct_invoke_enabled: bool
    timeout_seconds: float
    token_store: str
    source: str

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            proxy_url=first_env(
                "CHECKOUT_PROXY_URL",
                default="http://localhost:8000/api/creator-agent/checkout/invoke",
            ),
            session_url=first_env(
                "CHECKOUT_SESSION_URL",
                default="http://localhost:8000/api/creator-agent/checkout/session",
            ),
            gateway_url=normalize_invoke_url(first_env("CHECKOUT_GATEWAY_URL")),
            direct_invoke_enabled=_parse_bool(first_env("CHECKOUT_DIRECT_INVOKE", default="false")),
            timeout_seconds=float(first_env("CHECKOUT_TIMEOUT_SECONDS", default="20")),
            token_store=first_env("CHECKOUT_TOKEN_STORE", default="memory").lower(),
            source=first_env("CHECKOUT_SOURCE", default=DEFAULT_SOURCE),
        )


@dataclass(frozen=True, slots=True)
class ProxyConfig:
    """Configuration for the backend proxy routes.

    Env vars:
    - CHECKOUT_UPSTREAM_INVOKE_URL (falls back to CHECKOUT_GATEWAY_URL)
    - CHECKOUT_AGENT_API_KEY (falls back to AGENT_API_KEY)
    - CHECKOUT_BACKEND_BASE_URL (checkout intent minting backend)
    - CHECKOUT_TIMEOUT_SECONDS (default: 20)
    """

    upstream_invoke_url: str
    agent_api_key: str
    backend_base_url: str
    timeout_seconds: float

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        return cls(
            upstream_invoke_url=normalize_invoke_url(
                first_env("CHECKOUT_UPSTREAM_INVOKE_URL", "CHECKOUT_GATEWAY_URL")
            ),
            agent_api_key=first_env("CHECKOUT_AGENT_API_KEY", "AGENT_API_KEY"),
            backend_base_url=first_env("CHECKOUT_BACKEND_BASE_URL").rstrip("/"),
            timeout_seconds=float(first_env("CHECKOUT_TIMEOUT_SECONDS", default="20")),
        )

    def upstream_auth_headers(self, checkout_token: str | None = None) -> dict[str, str]:
        token = sanitize_env_value(checkout_token)
        if token:
            return {"X-Checkout-Token": token}
        return {"X-Agent-API-Key": self.agent_api_key} if self.agent_api_key else {}
