"""
Webhook-driven order completion.

Applies a canonical webhook event to host-platform state:

  1. Derive the cart id from the merchant order id (`<cartId>_<sequence>_...`)
  2. Success events complete the cart (or capture a payment-collection
     payment) inside one transaction
  3. Failure and refund events are logged only
  4. Unknown event types are acknowledged with 204

At-most-once completion:
  - Deliveries for the same cart in this process run one at a time
  - An existing order for the cart turns completion into a no-op
  - The idempotency record (webhook path, event id) makes the host's
    completion replay its stored response instead of running twice
  - A store conflict between processes surfaces as 409 so the sender
    retries the delivery
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError

from phonepe_adapter.models.enums import GatewayCode, OrderPaymentStatus, WebhookEventType
from phonepe_adapter.webhooks.events import CanonicalWebhookEvent
from phonepe_adapter.webhooks.host import HostPlatform

logger = logging.getLogger("phonepe_adapter.reconciler")

WEBHOOK_PATH = "/phonepe/hooks"
PAYMENT_COLLECTION_PREFIX = "paycol"

SUCCESS_EVENTS = {
    WebhookEventType.ORDER_COMPLETED.value,
    GatewayCode.PAYMENT_SUCCESS.value,
    GatewayCode.SUCCESS.value,
}
FAILURE_EVENTS = {
    WebhookEventType.ORDER_FAILED.value,
    GatewayCode.PAYMENT_ERROR.value,
    GatewayCode.PAYMENT_DECLINED.value,
}
REFUND_EVENTS = {
    WebhookEventType.REFUND_COMPLETED.value,
    WebhookEventType.REFUND_FAILED.value,
}

# SQLSTATE serialization_failure and unique_violation
CONFLICT_CODES = {"40001", "23505", "SERIALIZATION_FAILURE", "409"}


class CartCompletionError(Exception):
    """Host completion strategy answered with a non-200 response."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class WebhookResult:
    status_code: int


def cart_id_from_merchant_order_id(merchant_order_id: str) -> str:
    """
    Recover the cart id from a merchant order id.

    Host ids carry one underscore (`cart_01H...`), so the cart id is the
    first two underscore-separated segments.
    """
    parts = merchant_order_id.split("_")
    if len(parts) < 2:
        return merchant_order_id
    return f"{parts[0]}_{parts[1]}"


def is_payment_collection(resource_id: str) -> bool:
    return bool(resource_id) and resource_id.startswith(PAYMENT_COLLECTION_PREFIX)


def _error_code(err: BaseException) -> Optional[str]:
    if isinstance(err, DBAPIError):
        orig = err.orig
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if code:
            return str(code)
    code = getattr(err, "code", None)
    return str(code) if code is not None else None


def is_conflict(err: BaseException) -> bool:
    """Serialization failure or unique violation from concurrent completion."""
    return isinstance(err, IntegrityError) or _error_code(err) in CONFLICT_CODES


def build_error_message(event_type: str, err: BaseException) -> str:
    if is_conflict(err):
        return (
            f"PhonePe webhook {event_type} handle failed. This can happen when this webhook is "
            f"triggered during a cart completion and can be ignored. This event should be retried "
            f"automatically.\n{err}"
        )
    return f"PhonePe webhook {event_type} handling failed\n{_error_code(err) or err}"


class _KeyedLocks:
    """asyncio locks per key, dropped once nobody holds or waits on them."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                del self._users[key]
                del self._locks[key]


class OrderCompletionReconciler:
    """Applies canonical webhook events to the host platform."""

    def __init__(self, host: HostPlatform):
        self._host = host
        self._cart_locks = _KeyedLocks()

    async def handle_webhook(self, event: CanonicalWebhookEvent) -> WebhookResult:
        merchant_order_id = event.merchant_order_id
        if not merchant_order_id:
            logger.error("No merchantOrderId or merchantTransactionId found in webhook %s", event.id)
            return WebhookResult(status_code=400)

        cart_id = cart_id_from_merchant_order_id(merchant_order_id)
        event_type = event.event_type
        logger.info("Webhook %s for %s (cart %s)", event_type, merchant_order_id, cart_id)

        if event_type in SUCCESS_EVENTS:
            try:
                async with self._cart_locks.lock(cart_id):
                    await self._on_payment_succeeded(event, merchant_order_id, cart_id)
            except Exception as e:
                logger.error(build_error_message(event_type, e))
                return WebhookResult(status_code=409)

        elif event_type in FAILURE_EVENTS:
            logger.error(
                "The payment of the payment intent %s has failed\n%s",
                merchant_order_id,
                getattr(event.payload, "message", ""),
            )

        elif event_type in REFUND_EVENTS:
            logger.info("Refund webhook received: %s for %s", event_type, merchant_order_id)

        else:
            logger.info("Unhandled webhook event type: %s", event_type)
            return WebhookResult(status_code=204)

        return WebhookResult(status_code=200)

    async def _on_payment_succeeded(self, event: CanonicalWebhookEvent, merchant_order_id: str, cart_id: str) -> None:
        async with self._host.transaction() as tx:
            if is_payment_collection(cart_id):
                await self._capture_payment_collection_if_necessary(merchant_order_id, cart_id, tx)
            else:
                await self._complete_cart_if_necessary(event.id, cart_id, tx)
                await self._capture_payment_if_necessary(cart_id, tx)

    async def _capture_payment_collection_if_necessary(self, merchant_order_id: str, collection_id: str, tx: Any) -> None:
        collection = await self._host.retrieve_payment_collection(collection_id, tx)
        if collection is None or not collection.payments:
            logger.info("No payments to collect on %s", collection_id)
            return

        payment = next(
            (
                p
                for p in collection.payments
                if merchant_order_id in (p.data.get("merchantOrderId"), p.data.get("merchantTransactionId"))
            ),
            None,
        )
        if payment is not None and not payment.captured:
            logger.info("Capturing payment %s of collection %s", payment.id, collection_id)
            await self._host.capture_collection_payment(payment.id, tx)

    async def _complete_cart_if_necessary(self, event_id: str, cart_id: str, tx: Any) -> None:
        order = await self._host.retrieve_order_by_cart_id(cart_id, tx)
        if order is not None:
            logger.info("Cart %s already completed as order %s", cart_id, order.id)
            return

        key = await self._host.retrieve_idempotency_key(WEBHOOK_PATH, event_id, tx)
        if key is None:
            key = await self._host.create_idempotency_key(WEBHOOK_PATH, event_id, tx)
        logger.info("Obtained idempotency key for cart %s", cart_id)

        cart = await self._host.retrieve_cart(cart_id, tx)
        result = await self._host.complete_cart(cart_id, key, {"ip": cart.context.get("ip")}, tx)
        if result.response_code != 200:
            raise CartCompletionError(
                str(result.response_body.get("message", "Cart completion failed")),
                code=result.response_body.get("code"),
            )

    async def _capture_payment_if_necessary(self, cart_id: str, tx: Any) -> None:
        order = await self._host.retrieve_order_by_cart_id(cart_id, tx)
        if order is None:
            logger.info("No order with cart id %s", cart_id)
            return
        if order.payment_status != OrderPaymentStatus.CAPTURED.value:
            logger.info("Capturing payment of order %s", order.id)
            await self._host.capture_order_payment(order.id, tx)
