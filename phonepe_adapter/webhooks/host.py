"""
Host-platform capabilities consumed by the reconciler.

The adapter does not own carts, orders or idempotency keys. It drives them
through this narrow interface; `host_store.SqlHostPlatform` is the
SQLAlchemy-backed reference implementation.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, Optional, Protocol


@dataclass
class HostOrder:
    id: str
    cart_id: str
    payment_status: str


@dataclass
class HostCart:
    id: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class HostIdempotencyKey:
    request_path: str
    idempotency_key: str
    response_code: Optional[int] = None
    response_body: Optional[dict[str, Any]] = None


@dataclass
class HostPayment:
    id: str
    data: dict[str, Any]
    captured: bool


@dataclass
class HostPaymentCollection:
    id: str
    payments: list[HostPayment]


@dataclass
class CompletionResult:
    response_code: int
    response_body: dict[str, Any]


class HostPlatform(Protocol):
    """
    Unit-of-work plus the handful of cart/order operations webhooks need.

    `transaction()` yields an opaque handle passed back into every call made
    inside it. Store conflicts (serialization failures, unique violations)
    propagate to the caller.
    """

    def transaction(self) -> AsyncContextManager[Any]:
        ...

    async def retrieve_order_by_cart_id(self, cart_id: str, tx: Any = None) -> Optional[HostOrder]:
        ...

    async def retrieve_idempotency_key(
        self, request_path: str, idempotency_key: str, tx: Any
    ) -> Optional[HostIdempotencyKey]:
        ...

    async def create_idempotency_key(self, request_path: str, idempotency_key: str, tx: Any) -> HostIdempotencyKey:
        ...

    async def retrieve_cart(self, cart_id: str, tx: Any) -> HostCart:
        ...

    async def complete_cart(
        self,
        cart_id: str,
        idempotency_key: HostIdempotencyKey,
        context: dict[str, Any],
        tx: Any,
    ) -> CompletionResult:
        ...

    async def capture_order_payment(self, order_id: str, tx: Any) -> None:
        ...

    async def retrieve_payment_collection(self, collection_id: str, tx: Any) -> Optional[HostPaymentCollection]:
        ...

    async def capture_collection_payment(self, payment_id: str, tx: Any) -> None:
        ...
