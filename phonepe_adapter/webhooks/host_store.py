"""
SQLAlchemy-backed reference implementation of the host platform.

Used by the bundled FastAPI app and the tests. A real deployment plugs in the
host's own order/cart services behind the same HostPlatform interface.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from phonepe_adapter.models.enums import OrderPaymentStatus
from phonepe_adapter.models.host import Cart, IdempotencyKey, Order, Payment, PaymentCollection
from phonepe_adapter.webhooks.host import (
    CompletionResult,
    HostCart,
    HostIdempotencyKey,
    HostOrder,
    HostPayment,
    HostPaymentCollection,
)

logger = logging.getLogger("phonepe_adapter.host_store")


def _order_view(order: Order) -> HostOrder:
    return HostOrder(id=order.id, cart_id=order.cart_id, payment_status=order.payment_status)


def _key_view(key: IdempotencyKey) -> HostIdempotencyKey:
    return HostIdempotencyKey(
        request_path=key.request_path,
        idempotency_key=key.idempotency_key,
        response_code=key.response_code,
        response_body=key.response_body,
    )


class SqlHostPlatform:
    """HostPlatform over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.completions = 0  # carts actually turned into orders by this instance

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    async def retrieve_order_by_cart_id(self, cart_id: str, tx: Optional[AsyncSession] = None) -> Optional[HostOrder]:
        if tx is None:
            async with self._session_factory() as session:
                return await self.retrieve_order_by_cart_id(cart_id, session)

        result = await tx.execute(select(Order).where(Order.cart_id == cart_id))
        order = result.scalar_one_or_none()
        return _order_view(order) if order else None

    async def _get_key(self, request_path: str, idempotency_key: str, tx: AsyncSession) -> Optional[IdempotencyKey]:
        result = await tx.execute(
            select(IdempotencyKey).where(
                IdempotencyKey.request_path == request_path,
                IdempotencyKey.idempotency_key == idempotency_key,
            )
        )
        return result.scalar_one_or_none()

    async def retrieve_idempotency_key(
        self, request_path: str, idempotency_key: str, tx: AsyncSession
    ) -> Optional[HostIdempotencyKey]:
        key = await self._get_key(request_path, idempotency_key, tx)
        return _key_view(key) if key else None

    async def create_idempotency_key(
        self, request_path: str, idempotency_key: str, tx: AsyncSession
    ) -> HostIdempotencyKey:
        key = IdempotencyKey(request_path=request_path, idempotency_key=idempotency_key)
        tx.add(key)
        await tx.flush()  # unique (path, key) violation surfaces here
        return _key_view(key)

    async def retrieve_cart(self, cart_id: str, tx: AsyncSession) -> HostCart:
        cart = await tx.get(Cart, cart_id)
        if cart is None:
            raise LookupError(f"Cart not found: {cart_id}")
        return HostCart(id=cart.id, context=dict(cart.context or {}))

    async def complete_cart(
        self,
        cart_id: str,
        idempotency_key: HostIdempotencyKey,
        context: dict[str, Any],
        tx: AsyncSession,
    ) -> CompletionResult:
        """
        Turn the cart into an order, once per idempotency key.

        A key that already holds a response replays it without touching the
        cart again.
        """
        key = await self._get_key(idempotency_key.request_path, idempotency_key.idempotency_key, tx)
        if key is None:
            raise LookupError(f"Idempotency key not found: {idempotency_key.idempotency_key}")
        if key.response_code is not None:
            return CompletionResult(response_code=key.response_code, response_body=dict(key.response_body or {}))

        cart = await tx.get(Cart, cart_id)
        if cart is None:
            return CompletionResult(
                response_code=404,
                response_body={"code": "not_found", "message": f"Cart {cart_id} not found"},
            )

        order = Order(cart_id=cart.id, payment_status=OrderPaymentStatus.AWAITING.value)
        tx.add(order)
        cart.completed_at = datetime.now(timezone.utc)
        await tx.flush()  # unique cart_id violation surfaces here

        key.response_code = 200
        key.response_body = {"order_id": order.id}
        self.completions += 1
        logger.info("Cart %s completed as order %s (ip=%s)", cart_id, order.id, context.get("ip"))
        return CompletionResult(response_code=200, response_body={"order_id": order.id})

    async def capture_order_payment(self, order_id: str, tx: AsyncSession) -> None:
        order = await tx.get(Order, order_id)
        if order is None:
            raise LookupError(f"Order not found: {order_id}")
        order.payment_status = OrderPaymentStatus.CAPTURED.value
        order.captured_at = datetime.now(timezone.utc)

    async def retrieve_payment_collection(
        self, collection_id: str, tx: AsyncSession
    ) -> Optional[HostPaymentCollection]:
        collection = await tx.get(PaymentCollection, collection_id)
        if collection is None:
            return None
        return HostPaymentCollection(
            id=collection.id,
            payments=[
                HostPayment(id=p.id, data=dict(p.data or {}), captured=p.captured_at is not None)
                for p in collection.payments
            ],
        )

    async def capture_collection_payment(self, payment_id: str, tx: AsyncSession) -> None:
        payment = await tx.get(Payment, payment_id)
        if payment is None:
            raise LookupError(f"Payment not found: {payment_id}")
        payment.captured_at = datetime.now(timezone.utc)
