"""Enumerations for the payment adapter domain model."""

from enum import Enum


class PaymentSessionStatus(str, Enum):
    """Host-facing payment session states."""

    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    PENDING = "pending"
    ERROR = "error"
    CANCELED = "canceled"


class PaymentAction(str, Enum):
    """Action the host platform should take for an inbound webhook."""

    SUCCESSFUL = "captured"
    PENDING = "pending"
    FAILED = "failed"
    NOT_SUPPORTED = "not_supported"


class WebhookEventType(str, Enum):
    """Canonical dotted webhook event types."""

    ORDER_COMPLETED = "checkout.order.completed"
    ORDER_FAILED = "checkout.order.failed"
    REFUND_COMPLETED = "pg.refund.completed"
    REFUND_FAILED = "pg.refund.failed"


class GatewayCode(str, Enum):
    """Vendor result codes seen in legacy callbacks and status responses."""

    BAD_REQUEST = "BAD_REQUEST"
    AUTHORIZATION_FAILED = "AUTHORIZATION_FAILED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    PAYMENT_ERROR = "PAYMENT_ERROR"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAYMENT_DECLINED = "PAYMENT_DECLINED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_CANCELLED = "PAYMENT_CANCELLED"
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    SUCCESS = "SUCCESS"


class OrderPaymentStatus(str, Enum):
    """Payment status of a host order in the reference store."""

    AWAITING = "awaiting"
    CAPTURED = "captured"
