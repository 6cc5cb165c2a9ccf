"""
Mapping of provider payloads onto the canonical ``Observation`` type.

The provider has shipped several callback shapes over time:

- pg v1: a ``{"response": "<base64>"}`` envelope whose decoded JSON carries
  ``code`` and ``data.merchantTransactionId``, or the decoded object itself.
- checkout v2: ``{"event": ..., "payload": {"merchantOrderId", "state"}}``.
- a plain status object: ``{"merchantOrderId" | "orderId", "status"}``.

Every mapper is pure and total: any code lands on SUCCESS, FAILED or
PENDING, and anything not recognised as success or failure is PENDING.
"""
import base64
import binascii
import json
from typing import Any, Dict, Optional

from order_reconciler.core.exceptions import MalformedPayloadError
from order_reconciler.core.models import Observation, ObservationSource, OrderStatus

SUCCESS_CODES = frozenset(
    {
        "PAYMENT_SUCCESS",
        "PAYMENTSUCCESS",
        "SUCCESS",
        "COMPLETED",
        "PAID",
        "CHECKOUT.ORDER.COMPLETED",
    }
)

FAILURE_CODES = frozenset(
    {
        "PAYMENT_ERROR",
        "PAYMENT_DECLINED",
        "PAYMENT_CANCELLED",
        "PAYMENT_FAILED",
        "AUTHORIZATION_FAILED",
        "TIMED_OUT",
        "FAILED",
        "FAILURE",
        "DECLINED",
        "CANCELLED",
        "EXPIRED",
        "CHECKOUT.ORDER.FAILED",
    }
)


def map_provider_code(code: Optional[str]) -> OrderStatus:
    """
    Map a raw provider code or state onto the canonical status.

    Args:
        code: Provider code (``PAYMENT_SUCCESS``), state (``COMPLETED``) or None

    Returns:
        OrderStatus: SUCCESS, FAILED or PENDING
    """
    if not isinstance(code, str):
        return OrderStatus.PENDING
    normalized = code.strip().upper()
    if normalized in SUCCESS_CODES:
        return OrderStatus.SUCCESS
    if normalized in FAILURE_CODES:
        return OrderStatus.FAILED
    return OrderStatus.PENDING


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _require_order_id(order_id: Any) -> str:
    if not isinstance(order_id, str) or not order_id:
        raise MalformedPayloadError("Payload does not reference a merchant order id")
    return order_id


def from_pg_v1_callback(
    payload: Dict[str, Any], source: ObservationSource = ObservationSource.WEBHOOK
) -> Observation:
    """Decoded pg v1 callback: ``{"code", "data": {"merchantTransactionId", "state"}}``."""
    data = _as_dict(payload.get("data"))
    order_id = _require_order_id(
        data.get("merchantTransactionId") or payload.get("merchantTransactionId")
    )
    code = payload.get("code") or data.get("state")
    return Observation(
        order_id=order_id,
        status=map_provider_code(code),
        source=source,
        provider_code=code if isinstance(code, str) else None,
        payload=payload,
    )


def from_checkout_v2_callback(
    payload: Dict[str, Any], source: ObservationSource = ObservationSource.WEBHOOK
) -> Observation:
    """Checkout v2 callback: ``{"event", "payload": {"merchantOrderId", "state"}}``."""
    inner = _as_dict(payload.get("payload"))
    order_id = _require_order_id(inner.get("merchantOrderId"))
    code = inner.get("state") or payload.get("event") or payload.get("type")
    return Observation(
        order_id=order_id,
        status=map_provider_code(code),
        source=source,
        provider_code=code if isinstance(code, str) else None,
        payload=payload,
    )


def from_status_object(
    payload: Dict[str, Any], source: ObservationSource = ObservationSource.WEBHOOK
) -> Observation:
    """Plain JSON status object: ``{"merchantOrderId" | "orderId", "status"}``."""
    order_id = _require_order_id(
        payload.get("merchantOrderId")
        or payload.get("orderId")
        or payload.get("merchantTransactionId")
    )
    code = payload.get("status") or payload.get("state")
    return Observation(
        order_id=order_id,
        status=map_provider_code(code),
        source=source,
        provider_code=code if isinstance(code, str) else None,
        payload=payload,
    )


def decode_envelope(encoded: str) -> Dict[str, Any]:
    """
    Decode the base64 ``response`` field of a pg v1 envelope.

    Raises:
        MalformedPayloadError: If the field is not base64-encoded JSON
    """
    try:
        decoded = json.loads(base64.b64decode(encoded, validate=True))
    except (binascii.Error, ValueError) as e:
        raise MalformedPayloadError(f"Invalid callback envelope: {e}") from e
    if not isinstance(decoded, dict):
        raise MalformedPayloadError("Callback envelope does not contain an object")
    return decoded


def parse_webhook_body(raw_body: bytes) -> Observation:
    """
    Turn a verified webhook body into an ``Observation``.

    Args:
        raw_body: Exact bytes received from the provider

    Returns:
        Observation: Canonical webhook observation

    Raises:
        MalformedPayloadError: If the body is not JSON, has an unknown shape or
            names no order
    """
    try:
        body = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedPayloadError(f"Webhook body is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise MalformedPayloadError("Webhook body must be a JSON object")

    if isinstance(body.get("response"), str):
        return from_pg_v1_callback(decode_envelope(body["response"]))
    if isinstance(body.get("payload"), dict):
        return from_checkout_v2_callback(body)
    if "code" in body or isinstance(body.get("data"), dict):
        return from_pg_v1_callback(body)
    return from_status_object(body)
