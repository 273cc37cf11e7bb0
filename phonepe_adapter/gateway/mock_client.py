"""
In-process PhonePe gateway double.

Simulates the v2 API closely enough to drive the provider end to end:
  - Configurable latency (default 0ms)
  - Scripted failures, consumed one per call
  - Per-order state that tests (or a local run) can move along
  - Call counters for asserting de-duplication

Enabled in the app with PHONEPE_USE_MOCK_GATEWAY=true.
"""

import asyncio
import random
import uuid
from collections import Counter
from typing import Optional

from phonepe_adapter.engine.validation import (
    validate_expire_after,
    validate_merchant_order_id,
    validate_minor_amount,
)
from phonepe_adapter.gateway.base import (
    OrderStatus,
    PaymentGateway,
    PaymentRequest,
    PaymentResponse,
    RefundRequest,
    RefundResponse,
    ValidatedCallback,
)


class MockPhonePeClient(PaymentGateway):
    """
    Mock gateway keeping orders in memory.

    `failures` is a queue of exceptions raised by the next gateway calls,
    which lets tests script "fail twice then succeed" sequences.
    """

    def __init__(
        self,
        default_state: str = "COMPLETED",
        latency_ms: int = 0,
        failures: Optional[list[Exception]] = None,
        webhook_callback: Optional[ValidatedCallback] = None,
    ):
        self.default_state = default_state
        self._latency_ms = latency_ms
        self.failures: list[Exception] = list(failures or [])
        self.webhook_callback = webhook_callback
        self.orders: dict[str, OrderStatus] = {}
        self.calls: Counter[str] = Counter()

    async def _simulate(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._latency_ms > 0:
            jitter = random.uniform(0.5, 1.5)
            await asyncio.sleep(self._latency_ms * jitter / 1000)
        if self.failures:
            raise self.failures.pop(0)

    def set_state(self, merchant_order_id: str, state: str, amount: int = 0) -> None:
        existing = self.orders.get(merchant_order_id)
        self.orders[merchant_order_id] = OrderStatus(
            merchant_order_id=merchant_order_id,
            order_id=existing.order_id if existing else f"OMO{uuid.uuid4().hex[:16].upper()}",
            state=state,
            amount=amount or (existing.amount if existing else 0),
        )

    async def authenticate(self) -> str:
        return "mock-access-token"

    async def create_payment(self, request: PaymentRequest) -> PaymentResponse:
        validate_merchant_order_id(request.merchant_order_id)
        validate_minor_amount(request.amount)
        validate_expire_after(request.expire_after)
        await self._simulate("create_payment")

        order_id = f"OMO{uuid.uuid4().hex[:16].upper()}"
        self.orders[request.merchant_order_id] = OrderStatus(
            merchant_order_id=request.merchant_order_id,
            order_id=order_id,
            state="PENDING",
            amount=request.amount,
        )
        return PaymentResponse(
            order_id=order_id,
            redirect_url=f"https://mercury-uat.phonepe.com/transact/uat_v2?token={order_id}",
            state="PENDING",
            expire_at=None,
        )

    async def get_order_status(self, merchant_order_id: str, with_details: bool = True) -> OrderStatus:
        validate_merchant_order_id(merchant_order_id)
        await self._simulate("get_order_status")
        if merchant_order_id not in self.orders:
            self.set_state(merchant_order_id, self.default_state, amount=100000)
        return self.orders[merchant_order_id]

    async def create_refund(self, request: RefundRequest) -> RefundResponse:
        validate_merchant_order_id(request.original_merchant_order_id)
        validate_minor_amount(request.amount)
        await self._simulate("create_refund")
        return RefundResponse(
            refund_id=f"OMR{uuid.uuid4().hex[:16].upper()}",
            amount=request.amount,
            state="PENDING",
        )

    async def get_refund_status(self, merchant_refund_id: str) -> RefundResponse:
        await self._simulate("get_refund_status")
        return RefundResponse(refund_id=merchant_refund_id, amount=0, state="COMPLETED")

    async def validate_webhook_signature(
        self, authorization_header: str, raw_body: str
    ) -> Optional[ValidatedCallback]:
        self.calls["validate_webhook_signature"] += 1
        return self.webhook_callback
