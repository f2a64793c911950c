"""Shared checkout event schema (v1).

Every checkout attempt keeps an append-only event log. Clients can consume these events to
render what happened during an attempt, including failed steps.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventTypeV1(str, Enum):
    ATTEMPT_STARTED = "ATTEMPT_STARTED"
    QUOTE_ISSUED = "QUOTE_ISSUED"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"
    QUOTE_FAILED = "QUOTE_FAILED"
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_FAILED = "ORDER_FAILED"
    PAYMENT_SUBMITTED = "PAYMENT_SUBMITTED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


class EventV1(BaseModel):
    id: str
    attempt_id: str

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
