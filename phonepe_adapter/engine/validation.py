"""
Request validation and merchant order id generation.

Every check runs before a gateway call and raises InvalidRequestError, which
the retry engine passes straight through.
"""

import re
import secrets
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from phonepe_adapter.engine.retry import InvalidRequestError

MAX_MERCHANT_ORDER_ID_LENGTH = 50
MIN_EXPIRE_AFTER = 300
MAX_EXPIRE_AFTER = 3600

_ALLOWED_ID = re.compile(r"^[A-Za-z0-9._-]+$")
_DISALLOWED_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def validate_merchant_order_id(merchant_order_id: Optional[str]) -> str:
    if not merchant_order_id or not isinstance(merchant_order_id, str):
        raise InvalidRequestError("merchantOrderId is required")
    if len(merchant_order_id) > MAX_MERCHANT_ORDER_ID_LENGTH:
        raise InvalidRequestError(
            f"merchantOrderId exceeds {MAX_MERCHANT_ORDER_ID_LENGTH} characters: {merchant_order_id}"
        )
    if not _ALLOWED_ID.match(merchant_order_id):
        raise InvalidRequestError(f"merchantOrderId has invalid characters: {merchant_order_id}")
    return merchant_order_id


def validate_minor_amount(amount: Any) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidRequestError(f"amount must be a positive integer in minor units: {amount!r}")
    return amount


def validate_expire_after(expire_after: Optional[int]) -> None:
    if expire_after is None:
        return
    if not MIN_EXPIRE_AFTER <= expire_after <= MAX_EXPIRE_AFTER:
        raise InvalidRequestError(
            f"expireAfter must be between {MIN_EXPIRE_AFTER} and {MAX_EXPIRE_AFTER} seconds: {expire_after}"
        )


def validate_major_amount(amount: Any) -> Decimal:
    """
    Reject negative, zero and non-finite amounts before currency conversion.

    Returns:
        The amount as a Decimal.
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidRequestError(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise InvalidRequestError(f"Invalid amount: {amount!r}")
    return value


def sanitize_resource_id(resource_id: str) -> str:
    return _DISALLOWED_CHARS.sub("-", resource_id or "")


def generate_merchant_order_id(resource_id: str, sequence: int, suffix: Optional[str] = None) -> str:
    """
    Build `<resource id>_<sequence>_<suffix>` for a new payment.

    Webhook reconciliation recovers the cart id from the first two
    underscore-separated segments, so the resource id keeps its own
    underscore and only the tail is appended here.
    """
    suffix = suffix or secrets.token_hex(3)
    tail = f"_{sequence}_{suffix}"
    resource = sanitize_resource_id(resource_id) or "order"
    resource = resource[: MAX_MERCHANT_ORDER_ID_LENGTH - len(tail)]
    return validate_merchant_order_id(f"{resource}{tail}")
