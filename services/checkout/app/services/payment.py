from __future__ import annotations

import logging
from typing import Any

from packages.shared.schemas.checkout_v1 import (
    GatewayOperationV1,
    PaymentActionV1,
    PaymentResultV1,
)
from services.checkout.app.services.transport import TransportRouter

logger = logging.getLogger(__name__)


def _payment_scopes(body: dict[str, Any]) -> list[dict[str, Any]]:
    # Older gateways nest the payment fields one level down under "payment".
    scopes = [body]
    nested = body.get("payment")
    if isinstance(nested, dict):
        scopes.append(nested)
    return scopes


def _first_field(scopes: list[dict[str, Any]], *keys: str) -> Any:
    for scope in scopes:
        for key in keys:
            value = scope.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            return value
    return None


def normalize_payment_result(body: dict[str, Any]) -> PaymentResultV1:
    scopes = _payment_scopes(body)

    raw_action = _first_field(scopes, "payment_action")
    action = PaymentActionV1.model_validate(raw_action) if isinstance(raw_action, dict) else None

    # Some gateways put the PSP secret next to the action instead of inside it.
    if action is not None and not action.client_secret:
        secret = _first_field(scopes, "client_secret")
        if secret:
            action = action.model_copy(update={"client_secret": str(secret)})

    psp = _first_field(scopes, "psp_used", "psp")
    if psp is None and action is not None and action.type == "adyen_session":
        psp = "adyen"

    status = _first_field(scopes, "payment_status")
    redirect_url = _first_field(scopes, "redirect_url")

    return PaymentResultV1(
        payment_status=str(status) if status is not None else None,
        redirect_url=str(redirect_url) if redirect_url is not None else None,
        payment_action=action,
        psp=str(psp) if psp is not None else None,
        raw=body,
    )


class PaymentService:
    """Phase 3: submit payment for an order that already exists."""

    def __init__(self, router: TransportRouter) -> None:
        self._router = router

    async def submit_payment_for_order(
        self,
        *,
        order_id: str,
        expected_amount: float,
        currency: str,
        payment_method_hint: str | None = None,
        return_url: str | None = None,
    ) -> PaymentResultV1:
        payment: dict[str, Any] = {
            "order_id": order_id,
            "expected_amount": expected_amount,
            "currency": currency,
            "payment_method_hint": payment_method_hint or "card",
        }
        if return_url:
            payment["return_url"] = return_url

        data = await self._router.invoke(GatewayOperationV1.SUBMIT_PAYMENT, {"payment": payment})
        result = normalize_payment_result(data)

        logger.info(
            "Submitted payment for order %s status=%s psp=%s",
            order_id,
            result.payment_status,
            result.psp,
        )
        return result
