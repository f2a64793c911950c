"""Backend side of the proxy channel.

The storefront never holds the agent API key. These routes attach it (or relay the browser's
checkout token) and forward to the gateway or the checkout intent backend.
"""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Any
from uuid import uuid4

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from packages.shared.schemas.checkout_v1 import GatewayOperationV1
from services.checkout.app.config import DEFAULT_SOURCE, ProxyConfig

logger = logging.getLogger(__name__)

router = APIRouter()

INVOKE_PATH = "/api/creator-agent/checkout/invoke"
SESSION_PATH = "/api/creator-agent/checkout/session"

ALLOWED_OPERATIONS = frozenset(op.value for op in GatewayOperationV1)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-Agent-API-Key, X-Checkout-Token",
    "Access-Control-Expose-Headers": "Server-Timing, x-gateway-retries, x-gateway-trace-id",
}


def get_upstream_client(cfg: ProxyConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=cfg.timeout_seconds)


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


def _cors(extra: dict[str, str] | None = None) -> dict[str, str]:
    return {**CORS_HEADERS, **(extra or {})}


def _server_timing(upstream_timing: str, upstream_ms: int, total_ms: int) -> str:
    # Prefer the gateway's own timing breakdown when it reports one.
    parts = [upstream_timing or f"upstream;dur={upstream_ms}"]
    parts.append(f"proxy;dur={max(0, total_ms - upstream_ms)}")
    parts.append(f"gateway;dur={total_ms}")
    return ", ".join(parts)


@router.post(INVOKE_PATH)
async def invoke_checkout(request: Request) -> Response:
    started = time.perf_counter()
    try:
        body = await request.json()
        operation = str(body.get("operation") or "").strip() if isinstance(body, dict) else ""
        if operation not in ALLOWED_OPERATIONS:
            return JSONResponse(
                {
                    "error": "UNSUPPORTED_OPERATION",
                    "message": "operation must be preview_quote, create_order, or submit_payment",
                },
                status_code=400,
                headers=_cors(),
            )

        cfg = ProxyConfig.from_env()
        if not cfg.upstream_invoke_url:
            raise ValueError("CHECKOUT_UPSTREAM_INVOKE_URL is not configured")

        trace_id = (request.headers.get("x-trace-id") or "").strip() or f"creator-checkout:{uuid4()}"
        headers = {
            "Content-Type": "application/json",
            "X-Trace-Id": trace_id,
            **cfg.upstream_auth_headers(request.headers.get("x-checkout-token")),
        }

        upstream_started = time.perf_counter()
        async with get_upstream_client(cfg) as http:
            upstream = await http.post(cfg.upstream_invoke_url, json=body, headers=headers)
        upstream_ms = _elapsed_ms(upstream_started)
    except (ValueError, httpx.HTTPError) as e:
        logger.warning("Checkout invoke proxy failed: %s: %s", type(e).__name__, e)
        return JSONResponse(
            {"error": "CREATOR_CHECKOUT_PROXY_ERROR", "detail": str(e) or type(e).__name__},
            status_code=500,
            headers=_cors(),
        )

    relay = {
        "Server-Timing": _server_timing(
            (upstream.headers.get("server-timing") or "").strip(),
            upstream_ms,
            _elapsed_ms(started),
        ),
        "x-gateway-trace-id": trace_id,
    }
    retries = (upstream.headers.get("x-gateway-retries") or "").strip()
    if retries:
        relay["x-gateway-retries"] = retries

    content_type = upstream.headers.get("content-type") or ""
    if "application/json" in content_type:
        try:
            data: Any = upstream.json()
        except ValueError:
            data = {}
        return JSONResponse(data, status_code=upstream.status_code, headers=_cors(relay))

    relay["Content-Type"] = content_type or "text/plain; charset=utf-8"
    return Response(content=upstream.text, status_code=upstream.status_code, headers=_cors(relay))


@router.options(INVOKE_PATH)
def invoke_checkout_preflight() -> JSONResponse:
    return JSONResponse({}, status_code=200, headers=_cors())


def normalize_intent_items(raw_items: Any) -> list[dict[str, Any]]:
    if not isinstance(raw_items, list):
        return []

    items: list[dict[str, Any]] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        product_id = _field(raw, "product_id", "productId")
        merchant_id = _field(raw, "merchant_id", "merchantId")
        if not product_id or not merchant_id:
            continue

        item: dict[str, Any] = {"product_id": product_id, "merchant_id": merchant_id}
        variant_id = _field(raw, "variant_id", "variantId")
        if variant_id:
            item["variant_id"] = variant_id
        sku = _field(raw, "sku")
        if sku:
            item["sku"] = sku
        item["quantity"] = _quantity(raw.get("quantity"))
        items.append(item)
    return items


def build_intent_request(body: dict[str, Any], items: list[dict[str, Any]]) -> dict[str, Any]:
    request: dict[str, Any] = {"items": items}
    return_url = _field(body, "return_url", "returnUrl")
    if return_url:
        request["return_url"] = return_url
    request["source"] = _field(body, "source") or DEFAULT_SOURCE
    market = _field(body, "market").upper()
    if market:
        request["market"] = market
    locale = _field(body, "locale")
    if locale:
        request["locale"] = locale
    buyer_ref = _field(body, "buyer_ref", "buyerRef")
    if buyer_ref:
        request["buyer_ref"] = buyer_ref
    job_id = _field(body, "job_id", "jobId")
    if job_id:
        request["job_id"] = job_id
    return request


@router.post(SESSION_PATH)
async def create_checkout_session(request: Request) -> JSONResponse:
    started = time.perf_counter()
    try:
        cfg = ProxyConfig.from_env()
        if not cfg.agent_api_key:
            return JSONResponse(
                {
                    "error": "CHECKOUT_SESSION_KEY_MISSING",
                    "message": "Creator checkout API key is not configured",
                },
                status_code=500,
            )

        try:
            body = await request.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        items = normalize_intent_items(body.get("items"))
        if not items:
            return JSONResponse(
                {
                    "error": "INVALID_REQUEST",
                    "message": "items[] with merchant_id/product_id is required",
                },
                status_code=400,
            )

        if not cfg.backend_base_url:
            raise ValueError("CHECKOUT_BACKEND_BASE_URL is not configured")

        async with get_upstream_client(cfg) as http:
            upstream = await http.post(
                f"{cfg.backend_base_url}/agent/v1/checkout/intents",
                json=build_intent_request(body, items),
                headers={
                    "X-Agent-API-Key": cfg.agent_api_key,
                    "Authorization": f"Bearer {cfg.agent_api_key}",
                },
            )
    except (ValueError, httpx.HTTPError) as e:
        logger.warning("Checkout session proxy failed: %s: %s", type(e).__name__, e)
        return JSONResponse(
            {"error": "CREATOR_CHECKOUT_SESSION_PROXY_ERROR", "detail": str(e) or type(e).__name__},
            status_code=500,
            headers={"Server-Timing": f"gateway;dur={_elapsed_ms(started)}"},
        )

    text = upstream.text
    try:
        data: Any = json.loads(text) if text else {}
    except ValueError:
        data = {"error": "INVALID_UPSTREAM_RESPONSE", "detail": text}

    return JSONResponse(
        data,
        status_code=upstream.status_code,
        headers={"Server-Timing": f"gateway;dur={_elapsed_ms(started)}"},
    )


def _field(raw: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def _quantity(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(number) or number <= 0:
        return 1
    return max(1, int(math.floor(number)))
