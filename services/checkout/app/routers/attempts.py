from __future__ import annotations

import logging
from typing import Any, NoReturn

from fastapi import APIRouter, HTTPException

from services.checkout.app.models.attempt import (
    AttemptCreateRequest,
    AttemptDetail,
    AttemptView,
    PaymentRequest,
    PaymentResponse,
)
from services.checkout.app.services.client_factory import get_checkout_client
from services.checkout.app.services.errors import (
    AttemptNotFoundError,
    AttemptStateError,
    CartValidationError,
    CheckoutError,
    GatewayError,
    GatewayResponseError,
    GatewayUnavailableError,
    QuoteStateError,
    parse_gateway_error,
)
from services.checkout.app.services.saga import CheckoutSaga
from services.checkout.app.services.store import AttemptRecord, AttemptStore, get_attempt_store

logger = logging.getLogger(__name__)

router = APIRouter()


def _error_detail(e: Exception, attempt_id: str | None) -> dict[str, Any]:
    info = parse_gateway_error(e)
    detail: dict[str, Any] = {
        "code": info.code,
        "message": info.message,
        "debug_id": info.debug_id,
        "retryable": info.retryable,
    }
    if attempt_id:
        detail["attempt_id"] = attempt_id
    return detail


def _raise_checkout_http_error(e: Exception, attempt_id: str | None = None) -> NoReturn:
    if isinstance(e, AttemptNotFoundError):
        raise HTTPException(status_code=404, detail=_error_detail(e, attempt_id)) from e

    if isinstance(e, CartValidationError):
        raise HTTPException(status_code=422, detail=_error_detail(e, attempt_id)) from e

    if isinstance(e, (QuoteStateError, AttemptStateError)):
        raise HTTPException(status_code=409, detail=_error_detail(e, attempt_id)) from e

    if isinstance(e, GatewayUnavailableError):
        raise HTTPException(status_code=503, detail=_error_detail(e, attempt_id)) from e

    if isinstance(e, (GatewayError, GatewayResponseError)):
        raise HTTPException(status_code=502, detail=_error_detail(e, attempt_id)) from e

    logger.exception("Unhandled checkout error for attempt %s", attempt_id)
    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def _get_store() -> AttemptStore:
    try:
        return get_attempt_store()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


def _view(record: AttemptRecord) -> AttemptView:
    return AttemptView(**_view_fields(record))


def _view_fields(record: AttemptRecord) -> dict[str, Any]:
    quote_total = None
    if record.quote:
        quote_total = (record.quote.get("pricing") or {}).get("total")
    return {
        "attempt_id": record.attempt_id,
        "state": record.state.value,
        "quote_id": record.quote_id,
        "quote_state": record.quote_state.value if record.quote_state else None,
        "quote_expires_at": record.quote_expires_at,
        "quote_total": quote_total,
        "order_id": record.order_id,
        "order_total": record.order_total,
        "order_currency": record.order_currency,
        "payment_status": record.payment_status,
        "last_error_code": record.last_error_code,
        "last_error_message": record.last_error_message,
    }


@router.post("/v1/checkout/attempts", response_model=AttemptView)
async def create_attempt(payload: AttemptCreateRequest) -> AttemptView:
    store = _get_store()
    attempt_id: str | None = None
    try:
        async with get_checkout_client() as client:
            saga = CheckoutSaga(client, store)
            record = saga.start(
                items=payload.items,
                shipping=payload.shipping,
                email=payload.email,
                discount_codes=payload.discount_codes,
                notes=payload.notes,
            )
            attempt_id = record.attempt_id
            record = await saga.checkout(attempt_id)
    except (CheckoutError, ValueError) as e:
        _raise_checkout_http_error(e, attempt_id)

    return _view(record)


@router.post("/v1/checkout/attempts/{attempt_id}/quote", response_model=AttemptView)
async def refresh_quote(attempt_id: str) -> AttemptView:
    store = _get_store()
    try:
        async with get_checkout_client() as client:
            record = await CheckoutSaga(client, store).quote(attempt_id)
    except (CheckoutError, ValueError) as e:
        _raise_checkout_http_error(e, attempt_id)

    return _view(record)


@router.post("/v1/checkout/attempts/{attempt_id}/order", response_model=AttemptView)
async def place_order(attempt_id: str) -> AttemptView:
    store = _get_store()
    try:
        async with get_checkout_client() as client:
            record = await CheckoutSaga(client, store).place_order(attempt_id)
    except (CheckoutError, ValueError) as e:
        _raise_checkout_http_error(e, attempt_id)

    return _view(record)


@router.post("/v1/checkout/attempts/{attempt_id}/payment", response_model=PaymentResponse)
async def submit_payment(attempt_id: str, payload: PaymentRequest) -> PaymentResponse:
    store = _get_store()
    try:
        async with get_checkout_client() as client:
            record, result = await CheckoutSaga(client, store).pay(
                attempt_id,
                payment_method_hint=payload.payment_method_hint,
                return_url=payload.return_url,
            )
    except (CheckoutError, ValueError) as e:
        _raise_checkout_http_error(e, attempt_id)

    return PaymentResponse(
        attempt=_view(record),
        payment_status=result.payment_status,
        redirect_url=result.redirect_url,
        payment_action=result.payment_action,
        psp=result.psp,
    )


@router.get("/v1/checkout/attempts/{attempt_id}", response_model=AttemptDetail)
def get_attempt(attempt_id: str) -> AttemptDetail:
    store = _get_store()
    record = store.get(attempt_id)
    if record is None:
        _raise_checkout_http_error(AttemptNotFoundError(attempt_id), attempt_id)

    return AttemptDetail(
        **_view_fields(record),
        items=record.items,
        events=store.list_events(attempt_id),
    )
