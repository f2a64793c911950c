"""Checkout attempts as an explicit saga.

    PENDING --quote--> QUOTED --place_order--> ORDERED --pay--> PAID
                         ^  |
                         +--+  re-quote

Every transition is written to the attempt store before the next network call, so a failure
between QUOTED and ORDERED stays visible as a QUOTED attempt carrying ``last_error_*`` instead
of a lost quote. Nothing here retries on its own; callers decide.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from uuid import uuid4

from packages.shared.schemas.checkout_v1 import CartItemV1, PaymentResultV1, ShippingAddressV1
from packages.shared.schemas.events import EventTypeV1
from services.checkout.app.services.client import CheckoutClient
from services.checkout.app.services.errors import (
    AttemptNotFoundError,
    AttemptStateError,
    CheckoutError,
    GatewayError,
    GatewayResponseError,
    QuoteStateError,
    is_retryable_quote_error,
    parse_gateway_error,
)
from services.checkout.app.services.store import (
    AttemptRecord,
    AttemptState,
    AttemptStore,
    QuoteState,
    as_utc,
)

logger = logging.getLogger(__name__)

SETTLED_PAYMENT_STATUSES = frozenset({"paid", "succeeded", "completed", "captured"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutSaga:
    def __init__(
        self,
        client: CheckoutClient,
        store: AttemptStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._store = store
        self._clock = clock

    def start(
        self,
        *,
        items: Sequence[CartItemV1],
        shipping: ShippingAddressV1,
        email: str,
        discount_codes: Sequence[str] = (),
        notes: str | None = None,
    ) -> AttemptRecord:
        record = AttemptRecord(
            attempt_id=uuid4().hex,
            state=AttemptState.PENDING,
            items=[item.model_dump(mode="json") for item in items],
            shipping_address=shipping.model_dump(mode="json"),
            customer_email=email,
            discount_codes=list(discount_codes),
            customer_notes=notes,
        )
        self._store.create(record)
        self._store.append_event(
            record.attempt_id, EventTypeV1.ATTEMPT_STARTED, {"item_count": len(record.items)}
        )
        return record

    def get(self, attempt_id: str) -> AttemptRecord:
        record = self._store.get(attempt_id)
        if record is None:
            raise AttemptNotFoundError(attempt_id)
        return record

    async def quote(self, attempt_id: str) -> AttemptRecord:
        record = self.get(attempt_id)
        if record.state not in (AttemptState.PENDING, AttemptState.QUOTED):
            raise AttemptStateError(attempt_id, record.state.value, "refresh the quote")

        try:
            quote = await self._client.preview_quote_from_cart(
                items=_items(record),
                shipping=_shipping(record),
                email=record.customer_email,
                discount_codes=record.discount_codes,
            )
        except CheckoutError as e:
            self._fail(record, e, EventTypeV1.QUOTE_FAILED)
            raise

        record.state = AttemptState.QUOTED
        record.quote_id = quote.quote_id
        record.quote_state = QuoteState.ISSUED
        record.quote_expires_at = as_utc(quote.expires_at)
        record.quote = quote.model_dump(mode="json")
        record.last_error_code = None
        record.last_error_message = None
        self._store.save(record)
        self._store.append_event(
            attempt_id,
            EventTypeV1.QUOTE_ISSUED,
            {"quote_id": quote.quote_id, "total": quote.pricing.total},
        )
        logger.info("Attempt %s quoted with %s", attempt_id, quote.quote_id)
        return record

    async def place_order(self, attempt_id: str) -> AttemptRecord:
        record = self.get(attempt_id)
        if record.state is not AttemptState.QUOTED or not record.quote_id:
            raise AttemptStateError(attempt_id, record.state.value, "place an order")

        if record.quote_state is QuoteState.CONSUMED:
            raise QuoteStateError(record.quote_id, code="QUOTE_CONSUMED")

        if record.quote_state is QuoteState.EXPIRED or self._quote_lapsed(record):
            self._expire_quote(record, reason="expires_at passed")
            raise QuoteStateError(record.quote_id, code="QUOTE_EXPIRED")

        try:
            order = await self._client.create_order_with_quote(
                quote_id=record.quote_id,
                items=_items(record),
                shipping=_shipping(record),
                email=record.customer_email,
                discount_codes=record.discount_codes,
                notes=record.customer_notes,
            )
        except GatewayError as e:
            if is_retryable_quote_error(e.code):
                self._expire_quote(record, reason=e.code or "")
            self._fail(record, e, EventTypeV1.ORDER_FAILED)
            raise
        except CheckoutError as e:
            self._fail(record, e, EventTypeV1.ORDER_FAILED)
            raise

        record.state = AttemptState.ORDERED
        record.quote_state = QuoteState.CONSUMED
        record.order_id = order.order_id
        record.order_total = order.pricing.total if order.pricing is not None else None
        record.order_currency = order.effective_currency()
        record.payment_status = order.payment_status
        record.last_error_code = None
        record.last_error_message = None
        self._store.save(record)
        self._store.append_event(
            attempt_id,
            EventTypeV1.ORDER_CREATED,
            {"order_id": order.order_id, "quote_id": record.quote_id, "total": record.order_total},
        )
        logger.info("Attempt %s ordered as %s", attempt_id, order.order_id)
        return record

    async def checkout(self, attempt_id: str) -> AttemptRecord:
        await self.quote(attempt_id)
        return await self.place_order(attempt_id)

    async def pay(
        self,
        attempt_id: str,
        *,
        payment_method_hint: str | None = None,
        return_url: str | None = None,
    ) -> tuple[AttemptRecord, PaymentResultV1]:
        record = self.get(attempt_id)
        if record.state is not AttemptState.ORDERED or not record.order_id:
            raise AttemptStateError(attempt_id, record.state.value, "submit payment")

        # The order's server total is the guard value; never a locally recomputed amount.
        expected_amount = record.order_total
        if expected_amount is None and record.quote:
            expected_amount = (record.quote.get("pricing") or {}).get("total")
        if expected_amount is None:
            error = GatewayResponseError(
                f"Order {record.order_id} has no server total; cannot guard the payment amount."
            )
            self._fail(record, error, EventTypeV1.PAYMENT_FAILED)
            raise error

        try:
            result = await self._client.submit_payment_for_order(
                order_id=record.order_id,
                expected_amount=float(expected_amount),
                currency=record.order_currency or _cart_currency(record),
                payment_method_hint=payment_method_hint,
                return_url=return_url,
            )
        except CheckoutError as e:
            self._fail(record, e, EventTypeV1.PAYMENT_FAILED)
            raise

        record.payment_status = result.payment_status
        if (result.payment_status or "").strip().lower() in SETTLED_PAYMENT_STATUSES:
            record.state = AttemptState.PAID
        record.last_error_code = None
        record.last_error_message = None
        self._store.save(record)
        self._store.append_event(
            attempt_id,
            EventTypeV1.PAYMENT_SUBMITTED,
            {"payment_status": result.payment_status, "psp": result.psp},
        )
        return record, result

    def _quote_lapsed(self, record: AttemptRecord) -> bool:
        if record.quote_expires_at is None:
            return False
        return as_utc(record.quote_expires_at) <= self._clock()

    def _expire_quote(self, record: AttemptRecord, *, reason: str) -> None:
        record.quote_state = QuoteState.EXPIRED
        self._store.save(record)
        self._store.append_event(
            record.attempt_id,
            EventTypeV1.QUOTE_EXPIRED,
            {"quote_id": record.quote_id, "reason": reason},
        )

    def _fail(self, record: AttemptRecord, error: CheckoutError, event_type: EventTypeV1) -> None:
        info = parse_gateway_error(error)
        record.last_error_code = info.code
        record.last_error_message = info.display()
        self._store.save(record)
        self._store.append_event(
            record.attempt_id,
            event_type,
            {"code": info.code, "message": info.message, "debug_id": info.debug_id},
        )
        logger.warning("Attempt %s %s: %s", record.attempt_id, event_type.value, info.display())


def _items(record: AttemptRecord) -> list[CartItemV1]:
    return [CartItemV1.model_validate(item) for item in record.items]


def _shipping(record: AttemptRecord) -> ShippingAddressV1:
    return ShippingAddressV1.model_validate(record.shipping_address)


def _cart_currency(record: AttemptRecord) -> str:
    for item in record.items:
        currency = str(item.get("currency") or "").strip().upper()
        if currency:
            return currency
    return "USD"
