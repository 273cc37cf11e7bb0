"""
Webhook normalization into one canonical event shape.

Callbacks arrive in two schema generations:

  - v2: {"type": "PG_ORDER_COMPLETED", "payload": {"merchantOrderId": ...}}
  - legacy: {"success": true, "code": "PAYMENT_SUCCESS", "data": {...}},
    sent either as JSON or base64-encoded JSON

The body shape is resolved once, at the boundary, into V2Payload or
LegacyPayload. Everything downstream reads the common properties and never
re-checks which generation it got.

Precedence when building an event:
  1. No authorization header -> MissingAuthorizationError.
  2. Signature validation through the gateway client.
  3. Unsigned legacy parsing when validation is unavailable or rejects the
     callback. This path is NOT verified: a known trust gap kept for
     merchants that have not configured webhook credentials.
  4. Unparseable body -> PAYMENT_ERROR event instead of an exception, so the
     sender still gets a structured acknowledgement.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

from phonepe_adapter.gateway.base import PaymentGateway, ValidatedCallback
from phonepe_adapter.models.enums import GatewayCode, WebhookEventType

logger = logging.getLogger("phonepe_adapter.webhooks")

ERROR_EVENT_ID = "error_id"
UNKNOWN_EVENT_ID = "unknown"

AUTHORIZATION_HEADERS = ("authorization", "Authorization", "x-authorization", "X-Authorization")

CALLBACK_TYPE_MAP: dict[str, str] = {
    "PG_ORDER_COMPLETED": WebhookEventType.ORDER_COMPLETED.value,
    "PG_ORDER_FAILED": WebhookEventType.ORDER_FAILED.value,
    "PG_REFUND_COMPLETED": WebhookEventType.REFUND_COMPLETED.value,
    "PG_REFUND_FAILED": WebhookEventType.REFUND_FAILED.value,
}

# Probe order for the event id
ID_FIELDS = ("merchantOrderId", "merchantTransactionId", "transactionId", "orderId")


class MissingAuthorizationError(ValueError):
    """Webhook request carried no authorization header at all."""


class WebhookParseError(ValueError):
    """Webhook body is not JSON (directly or base64-encoded)."""


def probe_id(data: Optional[Mapping[str, Any]], default: str) -> str:
    if data:
        for name in ID_FIELDS:
            value = data.get(name)
            if isinstance(value, str) and value:
                return value
    return default


def parse_amount(value: Any) -> int:
    """
    Minor-unit amount from an unverified callback field.

    Fractional values are rounded half-up; anything that is not a finite
    number counts as 0 so a malformed body never breaks event handling.
    """
    if value is None or value == "":
        return 0
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        logger.warning("Ignoring non-numeric webhook amount: %r", value)
        return 0
    if not amount.is_finite():
        logger.warning("Ignoring non-finite webhook amount: %r", value)
        return 0
    return int(amount.to_integral_value(rounding=ROUND_HALF_UP))


def map_callback_type(callback_type: Optional[str]) -> str:
    """Vendor callback type to canonical type. Absent type counts as completed."""
    if not callback_type:
        return WebhookEventType.ORDER_COMPLETED.value
    return CALLBACK_TYPE_MAP.get(callback_type, callback_type)


# ─── Payload union ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class V2Payload:
    """Payload of a v2 callback (signed or not)."""

    callback_type: Optional[str]
    data: dict[str, Any]
    verified: bool = False

    @property
    def merchant_order_id(self) -> Optional[str]:
        return self.data.get("merchantOrderId") or self.data.get("merchantTransactionId")

    @property
    def state(self) -> str:
        return str(self.data.get("state") or "").upper()

    @property
    def amount(self) -> int:
        return parse_amount(self.data.get("amount"))

    @property
    def message(self) -> str:
        return str(self.data.get("errorCode") or self.data.get("detailedErrorCode") or "")

    @property
    def code(self) -> Optional[str]:
        return self.callback_type


@dataclass(frozen=True)
class LegacyPayload:
    """Payload of a legacy S2S callback: {success, code, message, data}."""

    success: bool
    code: Optional[str]
    message: str
    data: dict[str, Any]

    @property
    def merchant_order_id(self) -> Optional[str]:
        return self.data.get("merchantOrderId") or self.data.get("merchantTransactionId")

    @property
    def state(self) -> str:
        return str(self.data.get("state") or "").upper()

    @property
    def amount(self) -> int:
        return parse_amount(self.data.get("amount"))


@dataclass(frozen=True)
class ErrorPayload:
    """Stand-in payload for callbacks we could not validate or parse."""

    error: str
    code: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def merchant_order_id(self) -> Optional[str]:
        return self.data.get("merchantOrderId") or self.data.get("merchantTransactionId")

    @property
    def state(self) -> str:
        return ""

    @property
    def amount(self) -> int:
        return 0


WebhookPayload = Union[V2Payload, LegacyPayload, ErrorPayload]


@dataclass(frozen=True)
class CanonicalWebhookEvent:
    """Schema-independent webhook event, consumed once by the reconciler."""

    event_type: str
    id: str
    payload: WebhookPayload

    @property
    def merchant_order_id(self) -> Optional[str]:
        return self.payload.merchant_order_id


# ─── Boundary parsing ──────────────────────────────────────────────────


def resolve_authorization_header(headers: Mapping[str, Any]) -> str:
    for name in AUTHORIZATION_HEADERS:
        value = headers.get(name)
        if value:
            return str(value)
    return ""


def normalize_raw_body(raw: Union[str, bytes, Mapping[str, Any], None]) -> str:
    """
    Reduce an inbound body to the string the validator signs over.

    Old integrations posted {"response": "<base64>"}; the envelope is
    unwrapped so the base64 text is parsed as the legacy callback.
    """
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return raw
    response = raw.get("response")
    if isinstance(response, str) and response:
        return response
    return json.dumps(raw)


def decode_body(raw_body: str) -> dict[str, Any]:
    """
    Parse a callback body given as JSON or base64-encoded JSON.

    Raises:
        WebhookParseError: When neither form yields a JSON object.
    """
    text = (raw_body or "").strip()
    try:
        if not text.startswith("{"):
            text = base64.b64decode(text, validate=True).decode("utf-8")
        body = json.loads(text)
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise WebhookParseError(f"Failed to parse webhook data: {e}") from e
    if not isinstance(body, dict):
        raise WebhookParseError("Webhook body is not a JSON object")
    return body


def parse_payload(body: Mapping[str, Any]) -> Union[V2Payload, LegacyPayload]:
    """Decide the schema generation of a decoded body, once."""
    if "payload" in body or "type" in body:
        data = body.get("payload")
        return V2Payload(
            callback_type=body.get("type"),
            data=dict(data) if isinstance(data, Mapping) else {},
        )

    data = body.get("data")
    return LegacyPayload(
        success=bool(body.get("success", False)),
        code=body.get("code"),
        message=str(body.get("message") or ""),
        data=dict(data) if isinstance(data, Mapping) else {},
    )


# ─── Event construction ────────────────────────────────────────────────


def event_from_callback(callback: ValidatedCallback) -> CanonicalWebhookEvent:
    payload = V2Payload(callback_type=callback.type, data=dict(callback.payload or {}), verified=True)
    return CanonicalWebhookEvent(
        event_type=map_callback_type(callback.type),
        id=probe_id(payload.data, UNKNOWN_EVENT_ID),
        payload=payload,
    )


def event_from_unverified(body: Mapping[str, Any]) -> CanonicalWebhookEvent:
    payload = parse_payload(body)
    if isinstance(payload, V2Payload):
        event_type = map_callback_type(payload.callback_type)
    else:
        event_type = payload.code or WebhookEventType.ORDER_COMPLETED.value
    return CanonicalWebhookEvent(
        event_type=event_type,
        id=probe_id(payload.data, UNKNOWN_EVENT_ID),
        payload=payload,
    )


def error_event(error: str, code: str, message: str, raw_body: str) -> CanonicalWebhookEvent:
    """PAYMENT_ERROR event, carrying whatever ids the body still yields."""
    try:
        data = parse_payload(decode_body(raw_body)).data
    except WebhookParseError:
        data = {}
    return CanonicalWebhookEvent(
        event_type=GatewayCode.PAYMENT_ERROR.value,
        id=probe_id(data, ERROR_EVENT_ID),
        payload=ErrorPayload(error=error, code=code, message=message, data=data),
    )


async def construct_webhook_event(
    gateway: PaymentGateway,
    authorization_header: Optional[str],
    raw_body: str,
) -> CanonicalWebhookEvent:
    """
    Build the canonical event for one inbound callback.

    Raises:
        MissingAuthorizationError: No authorization header; nothing to verify.
    """
    if not authorization_header:
        raise MissingAuthorizationError("Missing authorization header on webhook request")

    try:
        callback = await gateway.validate_webhook_signature(authorization_header, raw_body)
    except Exception as e:
        logger.error("Error validating webhook callback: %s", e)
        return error_event("Webhook validation failed", "VALIDATION_ERROR", str(e), raw_body)

    if callback is not None:
        return event_from_callback(callback)

    logger.warning("Webhook signature validation unavailable, parsing callback without verification")
    try:
        body = decode_body(raw_body)
    except WebhookParseError as e:
        logger.error("Error constructing webhook event: %s", e)
        return error_event("Failed to parse webhook data", "PARSE_ERROR", str(e), raw_body)

    return event_from_unverified(body)
