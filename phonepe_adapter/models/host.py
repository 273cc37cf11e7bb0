"""SQLAlchemy models for the reference host-platform store."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str):
    return lambda: f"{prefix}_{uuid.uuid4().hex[:24]}"


class Cart(Base):
    """A shopping cart that becomes an order once payment succeeds."""

    __tablename__ = "carts"

    id = Column(String(64), primary_key=True, default=_new_id("cart"))
    currency_code = Column(String(3), default="INR")
    total = Column(Integer, default=0)
    context = Column(JSON, nullable=True)  # {"ip": ...}
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Order(Base):
    """
    An order created by completing a cart.

    The unique constraint on cart_id is the last line of defence against
    double completion across processes.
    """

    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, default=_new_id("order"))
    cart_id = Column(String(64), ForeignKey("carts.id"), nullable=False, unique=True, index=True)
    payment_status = Column(String(20), nullable=False, default="awaiting")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    captured_at = Column(DateTime(timezone=True), nullable=True)


class IdempotencyKey(Base):
    """
    Idempotency record for a side-effecting request.

    A non-null response_code marks the request as finished; replays return
    the stored response instead of re-running the operation.
    """

    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("request_path", "idempotency_key", name="uq_path_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_path = Column(String(200), nullable=False)
    idempotency_key = Column(String(200), nullable=False)
    response_code = Column(Integer, nullable=True)
    response_body = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class PaymentCollection(Base):
    """A collection of payments not tied to a cart (e.g. order edits)."""

    __tablename__ = "payment_collections"

    id = Column(String(64), primary_key=True, default=_new_id("paycol"))
    currency_code = Column(String(3), default="INR")
    amount = Column(Integer, default=0)

    payments = relationship("Payment", back_populates="payment_collection", lazy="selectin")


class Payment(Base):
    """A single payment within a payment collection."""

    __tablename__ = "payments"

    id = Column(String(64), primary_key=True, default=_new_id("pay"))
    payment_collection_id = Column(String(64), ForeignKey("payment_collections.id"), nullable=False)
    amount = Column(Integer, default=0)
    data = Column(JSON, nullable=True)  # provider data: {"merchantOrderId": ...}
    captured_at = Column(DateTime(timezone=True), nullable=True)

    payment_collection = relationship("PaymentCollection", back_populates="payments")
