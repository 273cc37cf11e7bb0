"""
PhonePe payment provider: the operation surface the host platform calls.

Each host payment-lifecycle operation maps onto the gateway like this:

  initiate   -> create a checkout order (retried), returns the redirect URL
  authorize  -> order status (cached), mapped to a session status
  capture    -> order status (cached); only succeeds for paid orders
  cancel     -> order status (cached); PhonePe has no cancel call
  refund     -> refund call (retried)
  retrieve   -> order status (cached), amount back in major units
  update     -> a fresh initiate; ongoing orders cannot be changed

Indeterminate gateway outcomes come back as data, so an initiate that hit a
5xx still returns a PENDING session and the webhook settles it later.
"""

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from phonepe_adapter.config import Settings
from phonepe_adapter.engine.currency import from_minor_units, to_minor_units
from phonepe_adapter.engine.retry import InvalidRequestError, execute_with_retry, is_indeterminate
from phonepe_adapter.engine.status_cache import StatusCache
from phonepe_adapter.engine.validation import generate_merchant_order_id, validate_major_amount
from phonepe_adapter.gateway.base import (
    OrderStatus,
    PaymentGateway,
    PaymentRequest,
    PaymentResponse,
    RefundRequest,
    RefundResponse,
)
from phonepe_adapter.models.enums import GatewayCode, PaymentAction, PaymentSessionStatus
from phonepe_adapter.webhooks.events import (
    CanonicalWebhookEvent,
    construct_webhook_event,
    normalize_raw_body,
    resolve_authorization_header,
)
from phonepe_adapter.webhooks.reconciler import FAILURE_EVENTS, REFUND_EVENTS, SUCCESS_EVENTS

logger = logging.getLogger("phonepe_adapter.provider")

DEFAULT_CURRENCY = "INR"
DEFAULT_EXPIRE_AFTER = 1800  # 30 minutes

SUCCESS_STATES = {"SUCCESS", "COMPLETED", "PAID"}

STATUS_MAP: dict[str, PaymentSessionStatus] = {
    "COMPLETED": PaymentSessionStatus.AUTHORIZED,
    "PAID": PaymentSessionStatus.AUTHORIZED,
    "SUCCESS": PaymentSessionStatus.AUTHORIZED,
    "PAYMENT_SUCCESS": PaymentSessionStatus.AUTHORIZED,
    "PENDING": PaymentSessionStatus.PENDING,
    "PAYMENT_PENDING": PaymentSessionStatus.PENDING,
    "PAYMENT_INITIATED": PaymentSessionStatus.PENDING,
    "CREATED": PaymentSessionStatus.PENDING,
    "INITIATED": PaymentSessionStatus.PENDING,
    "FAILED": PaymentSessionStatus.ERROR,
    "PAYMENT_ERROR": PaymentSessionStatus.ERROR,
    "PAYMENT_DECLINED": PaymentSessionStatus.ERROR,
    "BAD_REQUEST": PaymentSessionStatus.ERROR,
    "INTERNAL_SERVER_ERROR": PaymentSessionStatus.ERROR,
    "AUTHORIZATION_FAILED": PaymentSessionStatus.ERROR,
    "CANCELLED": PaymentSessionStatus.CANCELED,
    "PAYMENT_CANCELLED": PaymentSessionStatus.CANCELED,
    "TRANSACTION_NOT_FOUND": PaymentSessionStatus.CANCELED,
}


class ErrorCodes:
    PAYMENT_INTENT_UNEXPECTED_STATE = "payment_intent_unexpected_state"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    INVALID_DATA = "invalid_data"
    GATEWAY_ERROR = "gateway_error"


class PaymentProviderError(Exception):
    """Structured failure returned to the host: {error, code, detail}."""

    def __init__(self, error: str, code: str = ErrorCodes.GATEWAY_ERROR, detail: Any = None):
        super().__init__(error)
        self.error = error
        self.code = code
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "code": self.code, "detail": self.detail}


@dataclass
class PaymentInput:
    """Input record for every host payment operation."""

    amount: Any = None
    currency_code: str = DEFAULT_CURRENCY
    data: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)


def map_payment_status(order_status: OrderStatus) -> PaymentSessionStatus:
    """
    Map a gateway order state (or, without a state, its error code) to a
    session status. Unknown values stay PENDING so the caller polls again
    rather than failing a payment that may still succeed.
    """
    state = (order_status.state or "").upper()
    code = (order_status.error_code or order_status.detailed_error_code or "").upper()
    return STATUS_MAP.get(state or code, PaymentSessionStatus.PENDING)


def _merchant_order_id(data: Mapping[str, Any], include_id: bool = False) -> Optional[str]:
    value = data.get("merchantOrderId") or data.get("merchantTransactionId")
    if not value and include_id:
        value = data.get("id")
    return value if isinstance(value, str) and value else None


def _wrap(message: str, error: BaseException, code: str = ErrorCodes.GATEWAY_ERROR) -> PaymentProviderError:
    if isinstance(error, PaymentProviderError):
        return error
    if isinstance(error, InvalidRequestError):
        code = ErrorCodes.INVALID_DATA
    return PaymentProviderError(f"{message}: {error}", code=code, detail=getattr(error, "data", None))


class PhonePeProvider:
    """
    One provider instance per merchant configuration.

    Owns the gateway client, its status cache and the merchant order id
    sequence; nothing is shared between instances.
    """

    identifier = "phonepe"

    def __init__(self, options: Settings, gateway: PaymentGateway):
        options.validate_required()
        self._options = options
        self._gateway = gateway
        self._status_cache = StatusCache(gateway, ttl_seconds=options.status_cache_ttl_seconds)
        self._sequence = itertools.count(1)

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway

    async def _retry(self, call):
        return await execute_with_retry(
            call,
            max_retries=self._options.max_retries,
            base_delay_ms=self._options.base_delay_ms,
        )

    def _debug(self, message: str, payload: Any) -> None:
        if self._options.enabled_debug_logging:
            logger.info("%s: %s", message, payload)

    # ─── Initiate / update ─────────────────────────────────────────────

    async def initiate_payment(self, input: PaymentInput) -> dict[str, Any]:
        data = input.data or {}
        context = input.context or {}
        customer = context.get("customer") or {}
        resource_id = str(data.get("resource_id") or data.get("id") or "")

        try:
            amount = to_minor_units(validate_major_amount(input.amount), input.currency_code)
            merchant_order_id = generate_merchant_order_id(resource_id, next(self._sequence))
            request = PaymentRequest(
                merchant_order_id=merchant_order_id,
                amount=amount,
                redirect_url=self._options.redirect_url,
                expire_after=DEFAULT_EXPIRE_AFTER,
                message=self._options.payment_description,
                meta_info={
                    "udf1": str(customer.get("id") or ""),
                    "udf2": str(customer.get("email") or ""),
                    "udf3": resource_id,
                    "udf4": str(context.get("idempotency_key") or ""),
                },
            )

            logger.info(
                "Initiating payment %s: amount=%d currency=%s",
                merchant_order_id,
                amount,
                input.currency_code,
            )
            response = await self._retry(lambda: self._gateway.create_payment(request))
        except Exception as e:
            logger.error("Error initiating payment: %s", e)
            raise _wrap("An error occurred while initiating payment", e)

        self._debug("Payment response", response)

        if isinstance(response, PaymentResponse):
            return {
                "id": merchant_order_id,
                "data": {
                    "merchantOrderId": merchant_order_id,
                    "orderId": response.order_id,
                    "merchantTransactionId": response.order_id,
                    "redirectUrl": response.redirect_url,
                    "state": response.state,
                    "expireAt": response.expire_at,
                    "currency_code": input.currency_code,
                },
            }

        # Indeterminate or definitive-negative: keep the session pending
        # and let the webhook settle the real outcome.
        if is_indeterminate(response):
            logger.warning("Outcome of payment %s unknown (%s), awaiting webhook", merchant_order_id, response)
        else:
            logger.warning("Payment %s rejected by gateway: %s", merchant_order_id, response)
        return {
            "id": merchant_order_id,
            "data": {
                "merchantOrderId": merchant_order_id,
                "state": "PENDING",
                "currency_code": input.currency_code,
                "gateway_response": response,
            },
        }

    async def update_payment(self, input: PaymentInput) -> dict[str, Any]:
        logger.info("Update payment request: amount=%s currency=%s", input.amount, input.currency_code)
        return await self.initiate_payment(input)

    # ─── Status-based operations ───────────────────────────────────────

    async def get_payment_status(self, input: PaymentInput) -> dict[str, Any]:
        merchant_order_id = _merchant_order_id(input.data or {}, include_id=True)
        if not merchant_order_id:
            raise PaymentProviderError(
                "No merchant order ID provided while getting payment status",
                code=ErrorCodes.INVALID_DATA,
            )

        try:
            order_status = await self._status_cache.get_status(merchant_order_id, True)
        except Exception as e:
            raise _wrap("An error occurred while getting payment status", e)

        return {"status": map_payment_status(order_status), "data": order_status.to_dict()}

    async def authorize_payment(self, input: PaymentInput) -> dict[str, Any]:
        return await self.get_payment_status(input)

    async def capture_payment(self, input: PaymentInput) -> dict[str, Any]:
        data = input.data or {}
        merchant_order_id = _merchant_order_id(data)
        if not merchant_order_id:
            raise PaymentProviderError(
                "No merchant order ID provided while capturing payment",
                code=ErrorCodes.INVALID_DATA,
            )

        try:
            order_status = await self._status_cache.get_status(merchant_order_id, True)
        except Exception as e:
            raise _wrap("An error occurred in capturePayment", e)

        state = order_status.state.upper()
        if state not in SUCCESS_STATES:
            raise PaymentProviderError(
                f"Payment not in success state: {state or 'UNKNOWN'}. Cannot capture.",
                code=ErrorCodes.PAYMENT_INTENT_UNEXPECTED_STATE,
                detail=order_status.to_dict(),
            )

        return {
            "status": PaymentSessionStatus.CAPTURED,
            "data": {
                **data,
                "orderId": order_status.order_id,
                "merchantOrderId": order_status.merchant_order_id,
                "amount": order_status.amount,
                "paymentDetails": order_status.payment_details,
                "captured": True,
            },
        }

    async def cancel_payment(self, input: PaymentInput) -> dict[str, Any]:
        data = input.data or {}
        merchant_order_id = _merchant_order_id(data)
        if not merchant_order_id:
            return {"data": data}

        try:
            order_status = await self._status_cache.get_status(merchant_order_id, True)
        except Exception as e:
            raise _wrap("An error occurred in cancelPayment", e)

        state = order_status.state.upper()
        if state in SUCCESS_STATES:
            # Already paid; nothing to cancel
            return {"data": order_status.to_dict()}

        return {"data": {**data, "canceled": True, "state": state or "CANCELLED"}}

    async def delete_payment(self, input: PaymentInput) -> dict[str, Any]:
        return await self.cancel_payment(input)

    async def retrieve_payment(self, input: PaymentInput) -> dict[str, Any]:
        data = input.data or {}
        merchant_order_id = _merchant_order_id(data)
        if not merchant_order_id:
            raise PaymentProviderError(
                "No merchant order ID provided while retrieving payment",
                code=ErrorCodes.INVALID_DATA,
            )

        try:
            order_status = await self._status_cache.get_status(merchant_order_id, True)
        except Exception as e:
            raise _wrap("An error occurred in retrievePayment", e)

        currency_code = data.get("currency_code") or input.currency_code
        return {
            "data": {
                **order_status.to_dict(),
                "amount": from_minor_units(order_status.amount, currency_code),
            }
        }

    # ─── Refund ────────────────────────────────────────────────────────

    async def refund_payment(self, input: PaymentInput) -> dict[str, Any]:
        data = input.data or {}
        merchant_order_id = _merchant_order_id(data)
        original_merchant_order_id = data.get("originalTransactionId") or merchant_order_id
        if not merchant_order_id or not original_merchant_order_id:
            raise PaymentProviderError(
                "No merchant order ID provided while refunding payment",
                code=ErrorCodes.INVALID_DATA,
            )

        currency_code = data.get("currency_code") or input.currency_code
        try:
            request = RefundRequest(
                merchant_refund_id=f"{merchant_order_id}_refund_{int(time.time() * 1000)}",
                original_merchant_order_id=original_merchant_order_id,
                amount=to_minor_units(validate_major_amount(input.amount), currency_code),
            )
            logger.info(
                "Creating refund %s for %s: amount=%d",
                request.merchant_refund_id,
                original_merchant_order_id,
                request.amount,
            )
            response = await self._retry(lambda: self._gateway.create_refund(request))
        except Exception as e:
            raise _wrap("An error occurred in refundPayment", e)
        finally:
            self._status_cache.invalidate(original_merchant_order_id)

        self._debug("Refund response", response)

        if isinstance(response, RefundResponse):
            return {
                "data": {
                    **data,
                    "refundId": response.refund_id,
                    "refundAmount": response.amount,
                    "refundState": response.state,
                }
            }
        return {"data": data}

    # ─── Webhooks ──────────────────────────────────────────────────────

    async def construct_webhook_event(
        self,
        authorization_header: Optional[str],
        raw_body: str,
    ) -> CanonicalWebhookEvent:
        return await construct_webhook_event(self._gateway, authorization_header, raw_body)

    async def get_webhook_action_and_data(
        self,
        headers: Mapping[str, Any],
        raw_data: Union[str, bytes, Mapping[str, Any], None],
    ) -> dict[str, Any]:
        """
        Map an inbound webhook to the host's payment action.

        Returns:
            {"action": PaymentAction, "data": {"session_id", "amount"}}, or
            only the action when the event is not supported.
        """
        event = await self.construct_webhook_event(
            resolve_authorization_header(headers),
            normalize_raw_body(raw_data),
        )
        payload = event.payload
        session_id = payload.merchant_order_id or event.id
        data = {
            "session_id": session_id,
            "amount": from_minor_units(payload.amount, DEFAULT_CURRENCY),
        }

        event_type = event.event_type
        if event_type in SUCCESS_EVENTS or event_type == "PG_ORDER_COMPLETED":
            return {"action": PaymentAction.SUCCESSFUL, "data": data}
        if event_type in FAILURE_EVENTS or event_type == "PG_ORDER_FAILED":
            return {"action": PaymentAction.FAILED, "data": data}
        if event_type in REFUND_EVENTS:
            action = PaymentAction.SUCCESSFUL if event_type.endswith("completed") else PaymentAction.FAILED
            return {"action": action, "data": data}

        state = payload.state
        if state in ("PENDING", GatewayCode.PAYMENT_PENDING.value, GatewayCode.PAYMENT_INITIATED.value):
            return {"action": PaymentAction.PENDING, "data": data}
        if state in SUCCESS_STATES:
            return {"action": PaymentAction.SUCCESSFUL, "data": data}
        return {"action": PaymentAction.NOT_SUPPORTED}
