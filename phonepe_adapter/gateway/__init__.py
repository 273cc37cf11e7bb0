from phonepe_adapter.gateway.base import (
    OrderStatus,
    PaymentGateway,
    PaymentRequest,
    PaymentResponse,
    RefundRequest,
    RefundResponse,
    ValidatedCallback,
    WebhookValidator,
)
from phonepe_adapter.gateway.client import PhonePeClient
from phonepe_adapter.gateway.mock_client import MockPhonePeClient

__all__ = [
    "OrderStatus",
    "PaymentGateway",
    "PaymentRequest",
    "PaymentResponse",
    "RefundRequest",
    "RefundResponse",
    "ValidatedCallback",
    "WebhookValidator",
    "PhonePeClient",
    "MockPhonePeClient",
]
