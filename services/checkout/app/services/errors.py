"""Checkout error taxonomy and gateway error classification.

Backend envelopes are duck-typed: the code may live under ``detail`` or at the top level, and
proxies sometimes hand back plain text. Extraction is a list of rules tried in order; the first
rule that yields a non-empty value wins.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

RETRYABLE_QUOTE_ERROR_CODES = frozenset({"QUOTE_EXPIRED", "QUOTE_MISMATCH"})


class CheckoutError(Exception):
    """Base class for checkout pipeline errors."""

    code: str | None = None


class CartValidationError(CheckoutError):
    def __init__(self, message: str, *, code: str) -> None:
        super().__init__(message)
        self.code = code


class GatewayError(CheckoutError):
    """Non-2xx response from the checkout gateway that no channel fall-through absorbed."""

    def __init__(
        self,
        status_code: int,
        body: Any,
        *,
        operation: str | None = None,
        channel: str | None = None,
    ) -> None:
        super().__init__(_gateway_error_message(status_code, body))
        self.status_code = status_code
        self.body = body
        self.operation = operation
        self.channel = channel

    @property
    def code(self) -> str | None:  # type: ignore[override]
        return parse_gateway_error(self).code


class GatewayUnavailableError(CheckoutError):
    code = "GATEWAY_UNAVAILABLE"

    def __init__(self, operation: str, channel: str, reason: str) -> None:
        super().__init__(f"Checkout gateway unreachable via {channel} for {operation}: {reason}")
        self.operation = operation
        self.channel = channel


class GatewayResponseError(CheckoutError):
    """2xx response whose body does not match the checkout contract."""

    code = "INVALID_GATEWAY_RESPONSE"

    def __init__(self, message: str, *, body: Any = None) -> None:
        super().__init__(message)
        self.body = body


class QuoteStateError(CheckoutError):
    def __init__(self, quote_id: str, *, code: str) -> None:
        labels = {
            "QUOTE_CONSUMED": "has already been used to create an order",
            "QUOTE_EXPIRED": "has expired",
        }
        super().__init__(f"Quote {quote_id} {labels.get(code, 'cannot be used')}. Refresh the quote.")
        self.quote_id = quote_id
        self.code = code


class AttemptStateError(CheckoutError):
    code = "ATTEMPT_STATE_CONFLICT"

    def __init__(self, attempt_id: str, state: str, action: str) -> None:
        super().__init__(f"Checkout attempt {attempt_id} is {state}; cannot {action}.")
        self.attempt_id = attempt_id
        self.state = state


class AttemptNotFoundError(CheckoutError):
    code = "ATTEMPT_NOT_FOUND"

    def __init__(self, attempt_id: str) -> None:
        super().__init__(f"Checkout attempt not found: {attempt_id}")
        self.attempt_id = attempt_id


@dataclass(frozen=True, slots=True)
class GatewayErrorInfo:
    code: str | None
    message: str
    detail: Any = None
    debug_id: str | None = None
    status_code: int | None = None

    @property
    def retryable(self) -> bool:
        return is_retryable_quote_error(self.code)

    def display(self) -> str:
        suffix = f" (debug_id: {self.debug_id})" if self.debug_id else ""
        if self.code:
            return f"{self.code}: {self.message}{suffix}"
        return f"{self.message}{suffix}"


Rule = Callable[[dict[str, Any]], Any]


def _nested(key: str) -> Rule:
    def rule(body: dict[str, Any]) -> Any:
        detail = body.get("detail")
        return detail.get(key) if isinstance(detail, dict) else None

    return rule


def _top(key: str) -> Rule:
    return lambda body: body.get(key)


def _detail_text(body: dict[str, Any]) -> Any:
    detail = body.get("detail")
    return detail if isinstance(detail, str) else None


CODE_RULES: tuple[Rule, ...] = (_nested("code"), _nested("error"), _top("code"), _top("error"))
MESSAGE_RULES: tuple[Rule, ...] = (_nested("message"), _top("message"), _detail_text)
DEBUG_ID_RULES: tuple[Rule, ...] = (_nested("debug_id"), _top("debug_id"))


def first_match(body: dict[str, Any], rules: tuple[Rule, ...]) -> str | None:
    for rule in rules:
        value = rule(body)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def parse_gateway_error(exc: BaseException) -> GatewayErrorInfo:
    """Normalize any error into ``{code, message, detail, debug_id}``."""

    if not isinstance(exc, GatewayError):
        return GatewayErrorInfo(
            code=getattr(exc, "code", None),
            message=str(exc) or type(exc).__name__,
        )

    envelope = _as_envelope(exc.body)
    if envelope is None:
        text = str(exc.body or "").strip()
        return GatewayErrorInfo(
            code=None,
            message=text or f"Checkout gateway request failed with status {exc.status_code}",
            detail=exc.body,
            status_code=exc.status_code,
        )

    return GatewayErrorInfo(
        code=first_match(envelope, CODE_RULES),
        message=first_match(envelope, MESSAGE_RULES)
        or f"Checkout gateway request failed with status {exc.status_code}",
        detail=envelope.get("detail"),
        debug_id=first_match(envelope, DEBUG_ID_RULES),
        status_code=exc.status_code,
    )


def is_retryable_quote_error(code: str | None) -> bool:
    return code in RETRYABLE_QUOTE_ERROR_CODES


def _as_envelope(body: Any) -> dict[str, Any] | None:
    if isinstance(body, dict):
        return body
    if isinstance(body, (str, bytes)):
        try:
            decoded = json.loads(body)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def _gateway_error_message(status_code: int, body: Any) -> str:
    message = f"Checkout gateway request failed with status {status_code}"
    if body in (None, "", {}):
        return message
    rendered = body if isinstance(body, str) else json.dumps(body, default=str)
    return f"{message} body: {rendered[:500]}"


def build_model(model_type: type[ModelT], data: dict[str, Any]) -> ModelT:
    """Validate a gateway body against its contract model."""

    try:
        return model_type.model_validate(data)
    except ValidationError as e:
        raise GatewayResponseError(
            f"{model_type.__name__} response validation failed: {e}", body=data
        ) from e
