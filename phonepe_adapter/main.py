"""
PhonePe Adapter — webhook and health service.

Hosts the PhonePe payment-provider adapter behind a small FastAPI app: the
webhook endpoint completes carts on the reference host store, and the
provider instance on `app.state` serves the payment-session operations.

Start the server:
    uvicorn phonepe_adapter.main:app --reload

Run against the in-process mock gateway (credentials and URLs default to
local placeholders):
    PHONEPE_USE_MOCK_GATEWAY=true uvicorn phonepe_adapter.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from phonepe_adapter.api.health import router as health_router
from phonepe_adapter.api.webhooks import router as webhooks_router
from phonepe_adapter.config import settings
from phonepe_adapter.database import async_session, init_db
from phonepe_adapter.engine.provider import PhonePeProvider
from phonepe_adapter.gateway import MockPhonePeClient, PhonePeClient
from phonepe_adapter.webhooks.host_store import SqlHostPlatform
from phonepe_adapter.webhooks.reconciler import OrderCompletionReconciler

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger("phonepe_adapter.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the host store and wire provider and reconciler on startup."""
    await init_db()

    if settings.use_mock_gateway:
        options = settings.with_mock_defaults()
        gateway = MockPhonePeClient()
    else:
        options = settings
        gateway = PhonePeClient(options)
    logger.info("Starting PhonePe adapter in %s mode (mock gateway: %s)", options.mode, options.use_mock_gateway)

    app.state.settings = options
    app.state.provider = PhonePeProvider(options, gateway)
    app.state.reconciler = OrderCompletionReconciler(SqlHostPlatform(async_session))
    try:
        yield
    finally:
        await gateway.aclose()


app = FastAPI(
    title="PhonePe Adapter",
    description=(
        "PhonePe v2 payment-provider adapter: checkout sessions, status polling, "
        "refunds and webhook-driven cart completion."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(webhooks_router)
