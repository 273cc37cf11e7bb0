"""Shared test fixtures."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from phonepe_adapter.config import Settings
from phonepe_adapter.database import init_db
from phonepe_adapter.gateway.mock_client import MockPhonePeClient
from phonepe_adapter.models.host import Cart, Payment, PaymentCollection
from phonepe_adapter.webhooks.host_store import SqlHostPlatform

CART_ID = "cart_01HTESTCART"
COLLECTION_ID = "paycol_01HTESTCOL"


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        client_id="TEST_CLIENT",
        client_secret="test-secret",
        client_version=1,
        redirect_url="https://shop.example.com/checkout/complete",
        callback_url="https://shop.example.com/phonepe/hooks",
        mode="test",
        base_delay_ms=1,
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def gateway():
    return MockPhonePeClient()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    Fresh file-backed database per test.

    A file (rather than :memory:) lets concurrent sessions see each other's
    commits, which the duplicate-delivery tests rely on.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'host.db'}", echo=False)
    await init_db(engine)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def host(session_factory):
    """Host store pre-loaded with one open cart and one payment collection."""
    async with session_factory() as session:
        session.add(Cart(id=CART_ID, currency_code="INR", total=100000, context={"ip": "203.0.113.7"}))
        session.add(PaymentCollection(id=COLLECTION_ID, currency_code="INR", amount=50000))
        session.add(
            Payment(
                id="pay_01HTESTPAY",
                payment_collection_id=COLLECTION_ID,
                amount=50000,
                data={"merchantOrderId": f"{COLLECTION_ID}_1_abc123"},
            )
        )
        await session.commit()

    return SqlHostPlatform(session_factory)
