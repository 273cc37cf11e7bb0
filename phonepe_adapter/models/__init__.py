from phonepe_adapter.models.enums import (
    GatewayCode,
    OrderPaymentStatus,
    PaymentAction,
    PaymentSessionStatus,
    WebhookEventType,
)
from phonepe_adapter.models.host import Base, Cart, IdempotencyKey, Order, Payment, PaymentCollection

__all__ = [
    "Base",
    "Cart",
    "Order",
    "IdempotencyKey",
    "PaymentCollection",
    "Payment",
    "GatewayCode",
    "OrderPaymentStatus",
    "PaymentAction",
    "PaymentSessionStatus",
    "WebhookEventType",
]
