from __future__ import annotations

import os
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

from packages.shared.schemas.events import EventTypeV1, EventV1
from services.checkout.app.db.models import CheckoutAttempt, EventLog
from sqlalchemy.orm import Session


class AttemptState(str, Enum):
    PENDING = "PENDING"
    QUOTED = "QUOTED"
    ORDERED = "ORDERED"
    PAID = "PAID"


class QuoteState(str, Enum):
    ISSUED = "ISSUED"
    CONSUMED = "CONSUMED"
    EXPIRED = "EXPIRED"


@dataclass
class AttemptRecord:
    attempt_id: str
    state: AttemptState
    items: list[dict[str, Any]]
    shipping_address: dict[str, Any]
    customer_email: str
    discount_codes: list[str] = field(default_factory=list)
    customer_notes: str | None = None

    quote_id: str | None = None
    quote_state: QuoteState | None = None
    quote_expires_at: datetime | None = None
    quote: dict[str, Any] | None = None

    order_id: str | None = None
    order_total: float | None = None
    order_currency: str | None = None
    payment_status: str | None = None

    last_error_code: str | None = None
    last_error_message: str | None = None

    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


def as_utc(value: datetime | None) -> datetime | None:
    """Aware UTC datetime; naive values are taken to be UTC already."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AttemptStore(Protocol):
    def create(self, record: AttemptRecord) -> None: ...

    def get(self, attempt_id: str) -> AttemptRecord | None: ...

    def save(self, record: AttemptRecord) -> None: ...

    def append_event(
        self, attempt_id: str, event_type: EventTypeV1, payload: dict[str, Any]
    ) -> None: ...

    def list_events(self, attempt_id: str) -> list[EventV1]: ...


class InMemoryAttemptStore:
    def __init__(self) -> None:
        self._attempts: dict[str, AttemptRecord] = {}
        self._events: dict[str, list[EventV1]] = {}

    def create(self, record: AttemptRecord) -> None:
        self._attempts[record.attempt_id] = record
        self._events.setdefault(record.attempt_id, [])

    def get(self, attempt_id: str) -> AttemptRecord | None:
        return self._attempts.get(attempt_id)

    def save(self, record: AttemptRecord) -> None:
        record.updated_at = datetime.utcnow()
        self._attempts[record.attempt_id] = record

    def append_event(
        self, attempt_id: str, event_type: EventTypeV1, payload: dict[str, Any]
    ) -> None:
        self._events.setdefault(attempt_id, []).append(
            EventV1(
                id=uuid4().hex,
                attempt_id=attempt_id,
                event_type=event_type,
                payload=payload,
                created_at=datetime.utcnow().isoformat(),
            )
        )

    def list_events(self, attempt_id: str) -> list[EventV1]:
        return list(self._events.get(attempt_id, []))


class SqlAttemptStore:
    """Durable attempt records; every transition is committed before the next network call."""

    def __init__(self, session_scope: Callable[[], AbstractContextManager[Session]]) -> None:
        self._session_scope = session_scope

    def create(self, record: AttemptRecord) -> None:
        with self._session_scope() as db:
            row = CheckoutAttempt(id=record.attempt_id, created_at=record.created_at)
            _copy_to_row(record, row)
            db.add(row)

    def get(self, attempt_id: str) -> AttemptRecord | None:
        with self._session_scope() as db:
            row = db.get(CheckoutAttempt, attempt_id)
            return _row_to_record(row) if row is not None else None

    def save(self, record: AttemptRecord) -> None:
        record.updated_at = datetime.utcnow()
        with self._session_scope() as db:
            row = db.get(CheckoutAttempt, record.attempt_id)
            if row is None:
                row = CheckoutAttempt(id=record.attempt_id, created_at=record.created_at)
                db.add(row)
            _copy_to_row(record, row)

    def append_event(
        self, attempt_id: str, event_type: EventTypeV1, payload: dict[str, Any]
    ) -> None:
        with self._session_scope() as db:
            db.add(
                EventLog(
                    id=uuid4().hex,
                    attempt_id=attempt_id,
                    event_type=event_type.value,
                    event_payload_json=payload,
                )
            )

    def list_events(self, attempt_id: str) -> list[EventV1]:
        with self._session_scope() as db:
            rows = (
                db.query(EventLog)
                .filter(EventLog.attempt_id == attempt_id)
                .order_by(EventLog.created_at.asc())
                .all()
            )
            return [
                EventV1(
                    id=row.id,
                    attempt_id=row.attempt_id,
                    event_type=EventTypeV1(row.event_type),
                    payload=row.event_payload_json or {},
                    created_at=row.created_at.isoformat(),
                )
                for row in rows
            ]


def _copy_to_row(record: AttemptRecord, row: CheckoutAttempt) -> None:
    row.state = record.state.value
    row.cart_snapshot_json = record.items
    row.shipping_address_json = record.shipping_address
    row.customer_email = record.customer_email
    row.discount_codes_json = list(record.discount_codes)
    row.customer_notes = record.customer_notes
    row.quote_id = record.quote_id
    row.quote_state = record.quote_state.value if record.quote_state else None
    row.quote_expires_at = as_utc(record.quote_expires_at)
    row.quote_json = record.quote
    row.order_id = record.order_id
    row.order_total = record.order_total
    row.order_currency = record.order_currency
    row.payment_status = record.payment_status
    row.last_error_code = record.last_error_code
    row.last_error_message = record.last_error_message
    row.updated_at = record.updated_at


def _row_to_record(row: CheckoutAttempt) -> AttemptRecord:
    return AttemptRecord(
        attempt_id=row.id,
        state=AttemptState(row.state),
        items=list(row.cart_snapshot_json or []),
        shipping_address=dict(row.shipping_address_json or {}),
        customer_email=row.customer_email,
        discount_codes=list(row.discount_codes_json or []),
        customer_notes=row.customer_notes,
        quote_id=row.quote_id,
        quote_state=QuoteState(row.quote_state) if row.quote_state else None,
        quote_expires_at=as_utc(row.quote_expires_at),
        quote=row.quote_json,
        order_id=row.order_id,
        order_total=row.order_total,
        order_currency=row.order_currency,
        payment_status=row.payment_status,
        last_error_code=row.last_error_code,
        last_error_message=row.last_error_message,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


store = InMemoryAttemptStore()


def get_attempt_store() -> AttemptStore:
    """Select the attempt store from CHECKOUT_ATTEMPT_STORE (sql | memory, default sql)."""

    kind = os.getenv("CHECKOUT_ATTEMPT_STORE", "sql").strip().lower()
    if kind == "sql":
        from services.checkout.app.db.database import session_scope

        return SqlAttemptStore(session_scope)

    if kind == "memory":
        return store

    raise ValueError(f"Unknown CHECKOUT_ATTEMPT_STORE={kind!r}. Expected sql or memory.")
