"""
Payment gateway interface and request/response shapes.

Both the httpx-backed PhonePe client and the in-process mock implement
PaymentGateway, so the provider, status cache and webhook normalizer never
depend on the transport.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


@dataclass
class PaymentRequest:
    """Standard checkout payment request (amount in minor units)."""

    merchant_order_id: str
    amount: int
    redirect_url: str
    expire_after: Optional[int] = None  # seconds, 300..3600
    message: str = ""
    meta_info: dict[str, str] = field(default_factory=dict)  # udf1..udf5

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "merchantOrderId": self.merchant_order_id,
            "amount": self.amount,
            "paymentFlow": {
                "type": "PG_CHECKOUT",
                "message": self.message,
                "merchantUrls": {"redirectUrl": self.redirect_url},
            },
        }
        if self.expire_after is not None:
            payload["expireAfter"] = self.expire_after
        if self.meta_info:
            payload["metaInfo"] = self.meta_info
        return payload


@dataclass
class PaymentResponse:
    """Response from creating a checkout order."""

    order_id: str
    redirect_url: str
    state: Optional[str] = None
    expire_at: Optional[int] = None


@dataclass
class RefundRequest:
    """Refund against a previously paid merchant order (amount in minor units)."""

    merchant_refund_id: str
    original_merchant_order_id: str
    amount: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "merchantRefundId": self.merchant_refund_id,
            "originalMerchantOrderId": self.original_merchant_order_id,
            "amount": self.amount,
        }


@dataclass
class RefundResponse:
    refund_id: str
    amount: int
    state: str


@dataclass
class OrderStatus:
    """
    Read-only view of the gateway's order state.

    The gateway is the source of truth; we only read and cache this.
    """

    merchant_order_id: str
    order_id: Optional[str]
    state: str
    amount: int
    payment_details: list[dict[str, Any]] = field(default_factory=list)
    error_code: Optional[str] = None
    detailed_error_code: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, merchant_order_id: str, body: dict[str, Any]) -> "OrderStatus":
        return cls(
            merchant_order_id=body.get("merchantOrderId") or merchant_order_id,
            order_id=body.get("orderId"),
            state=str(body.get("state") or ""),
            amount=int(body.get("amount") or 0),
            payment_details=list(body.get("paymentDetails") or []),
            error_code=body.get("errorCode"),
            detailed_error_code=body.get("detailedErrorCode"),
            raw=body,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "merchantOrderId": self.merchant_order_id,
            "orderId": self.order_id,
            "state": self.state,
            "amount": self.amount,
            "paymentDetails": self.payment_details,
            "errorCode": self.error_code,
            "detailedErrorCode": self.detailed_error_code,
        }


@dataclass(frozen=True)
class ValidatedCallback:
    """A webhook callback whose authorization was verified by the validator."""

    type: Optional[str]
    payload: dict[str, Any]


class WebhookValidator(Protocol):
    """
    Signature validation capability, typically backed by the vendor SDK.

    Implementations raise on an invalid authorization header or body.
    """

    def validate_callback(
        self,
        username: str,
        password: str,
        authorization: str,
        body: str,
    ) -> ValidatedCallback:
        ...


class PaymentGateway(ABC):
    """Abstract base class for gateway clients."""

    @abstractmethod
    async def authenticate(self) -> str:
        """Return a valid OAuth access token, acquiring one if needed."""
        ...

    @abstractmethod
    async def create_payment(self, request: PaymentRequest) -> PaymentResponse:
        """
        Create a checkout order.

        Raises:
            InvalidRequestError: Before any network call on bad input.
            GatewayError: On transport failure or non-2xx response.
        """
        ...

    @abstractmethod
    async def get_order_status(self, merchant_order_id: str, with_details: bool = True) -> OrderStatus:
        ...

    @abstractmethod
    async def create_refund(self, request: RefundRequest) -> RefundResponse:
        ...

    @abstractmethod
    async def get_refund_status(self, merchant_refund_id: str) -> RefundResponse:
        ...

    @abstractmethod
    async def validate_webhook_signature(
        self, authorization_header: str, raw_body: str
    ) -> Optional[ValidatedCallback]:
        """Validated callback, or None when strong validation is unavailable or fails."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
