"""
PhonePe v2 API client.

Thin typed wrapper over httpx:
  - OAuth client-credentials token, cached per instance and refreshed five
    minutes before expiry, with a single in-flight acquisition
  - Standard checkout pay, order status, refund and refund status
  - Webhook callback validation through an injected validator

The client validates input and maps transport/HTTP failures to the
GatewayError family. It does not decide what a failure means; that is the
retry engine's job.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from phonepe_adapter.config import Settings
from phonepe_adapter.engine.retry import (
    GatewayConnectionError,
    GatewayHTTPError,
    InvalidRequestError,
    MalformedResponseError,
    RateLimitError,
)
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
    WebhookValidator,
)

logger = logging.getLogger("phonepe_adapter.gateway")

TOKEN_REFRESH_MARGIN_SECONDS = 300

BASE_URLS: dict[str, dict[str, str]] = {
    "production": {
        "auth": "https://api.phonepe.com/apis/identity-manager",
        "pg": "https://api.phonepe.com/apis/pg",
    },
    "uat": {
        "auth": "https://api-preprod.phonepe.com/apis/pg-sandbox",
        "pg": "https://api-preprod.phonepe.com/apis/pg-sandbox",
    },
    "test": {
        "auth": "https://api-preprod.phonepe.com/apis/pg-sandbox",
        "pg": "https://api-preprod.phonepe.com/apis/pg-sandbox",
    },
}


@dataclass(frozen=True)
class OAuthToken:
    token: str
    expires_at: float  # clock() value after which the token must be refreshed


class PhonePeClient(PaymentGateway):
    """httpx-backed PhonePe v2 client. One instance per provider configuration."""

    def __init__(
        self,
        options: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        webhook_validator: Optional[WebhookValidator] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._options = options
        urls = BASE_URLS.get(options.mode, BASE_URLS["test"])
        self._auth_url = urls["auth"]
        self._pg_url = urls["pg"]
        self._http = http_client or httpx.AsyncClient(timeout=options.http_timeout_seconds)
        self._validator = webhook_validator
        self._clock = clock

        self._token: Optional[OAuthToken] = None
        self._token_task: Optional[asyncio.Future] = None

    # ─── OAuth ─────────────────────────────────────────────────────────

    async def authenticate(self) -> str:
        """
        Return a valid access token.

        Concurrent callers during a refresh share the same token request.
        """
        if (
            self._options.token_cache_enabled
            and self._token is not None
            and self._token.expires_at > self._clock()
        ):
            return self._token.token

        task = self._token_task
        if task is None:
            task = asyncio.ensure_future(self._fetch_token())
            self._token_task = task
            task.add_done_callback(self._clear_token_task)
        return await asyncio.shield(task)

    def _clear_token_task(self, task: asyncio.Future) -> None:
        if self._token_task is task:
            self._token_task = None

    async def _fetch_token(self) -> str:
        body = await self._request(
            "POST",
            f"{self._auth_url}/v1/oauth/token",
            data={
                "client_id": self._options.client_id,
                "client_version": str(self._options.client_version),
                "client_secret": self._options.client_secret,
                "grant_type": "client_credentials",
            },
            authenticated=False,
        )
        access_token = body.get("access_token")
        if not access_token:
            raise MalformedResponseError("OAuth response missing access_token", data=body)

        now = self._clock()
        if body.get("expires_in") is not None:
            lifetime = float(body["expires_in"])
        elif body.get("expires_at") is not None:
            lifetime = float(body["expires_at"]) - now
        else:
            lifetime = 0.0

        self._token = OAuthToken(
            token=access_token,
            expires_at=now + lifetime - TOKEN_REFRESH_MARGIN_SECONDS,
        )
        logger.debug("OAuth token generated and cached")
        return access_token

    # ─── Payments ──────────────────────────────────────────────────────

    def validate_payment_request(self, request: PaymentRequest) -> None:
        validate_merchant_order_id(request.merchant_order_id)
        validate_minor_amount(request.amount)
        validate_expire_after(request.expire_after)
        if not request.redirect_url:
            raise InvalidRequestError("redirectUrl is required")

    async def create_payment(self, request: PaymentRequest) -> PaymentResponse:
        self.validate_payment_request(request)
        body = await self._request("POST", f"{self._pg_url}/checkout/v2/pay", json=request.to_payload())
        self._debug("payment", body)

        if not body.get("orderId") or not body.get("redirectUrl"):
            raise MalformedResponseError("Payment response missing orderId/redirectUrl", data=body)
        return PaymentResponse(
            order_id=body["orderId"],
            redirect_url=body["redirectUrl"],
            state=body.get("state"),
            expire_at=body.get("expireAt"),
        )

    async def get_order_status(self, merchant_order_id: str, with_details: bool = True) -> OrderStatus:
        validate_merchant_order_id(merchant_order_id)
        body = await self._request(
            "GET",
            f"{self._pg_url}/checkout/v2/order/{merchant_order_id}/status",
            params={"details": "true" if with_details else "false"},
        )
        self._debug("order status", body)

        if "state" not in body:
            raise MalformedResponseError("Order status response missing state", data=body)
        return OrderStatus.from_response(merchant_order_id, body)

    async def create_refund(self, request: RefundRequest) -> RefundResponse:
        validate_merchant_order_id(request.original_merchant_order_id)
        validate_minor_amount(request.amount)
        if not request.merchant_refund_id:
            raise InvalidRequestError("merchantRefundId is required")

        body = await self._request("POST", f"{self._pg_url}/payments/v2/refund", json=request.to_payload())
        self._debug("refund", body)
        return self._refund_response(body)

    async def get_refund_status(self, merchant_refund_id: str) -> RefundResponse:
        if not merchant_refund_id:
            raise InvalidRequestError("merchantRefundId is required")
        body = await self._request("GET", f"{self._pg_url}/payments/v2/refund/{merchant_refund_id}/status")
        self._debug("refund status", body)
        return self._refund_response(body)

    @staticmethod
    def _refund_response(body: dict[str, Any]) -> RefundResponse:
        if not body.get("refundId") or "state" not in body:
            raise MalformedResponseError("Refund response missing refundId/state", data=body)
        return RefundResponse(
            refund_id=body["refundId"],
            amount=int(body.get("amount") or 0),
            state=body["state"],
        )

    # ─── Webhooks ──────────────────────────────────────────────────────

    async def validate_webhook_signature(
        self, authorization_header: str, raw_body: str
    ) -> Optional[ValidatedCallback]:
        if self._validator is None or not self._options.webhook_validation_enabled:
            logger.debug("Webhook validation unavailable: validator or merchant credentials not configured")
            return None

        try:
            return self._validator.validate_callback(
                self._options.merchant_username,
                self._options.merchant_password,
                authorization_header,
                raw_body,
            )
        except Exception as e:
            logger.warning("Webhook callback failed validation: %s", e)
            return None

    # ─── Transport ─────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        *,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if authenticated:
            headers["Authorization"] = f"O-Bearer {await self.authenticate()}"

        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayConnectionError(f"Timed out calling {url}: {e}", code="ETIMEDOUT") from e
        except httpx.ConnectError as e:
            raise GatewayConnectionError(f"Could not connect to {url}: {e}", code="ECONNREFUSED") from e

        data = self._parse_body(response)

        if response.status_code == 429:
            raise RateLimitError(f"Rate limited by gateway: {url}", data=data)
        if not response.is_success:
            code = data.get("code") if data else None
            logger.error("Gateway call %s %s failed with %d: %s", method, url, response.status_code, data)
            raise GatewayHTTPError(
                f"Gateway returned {response.status_code} for {method} {url}",
                status_code=response.status_code,
                code=code,
                data=data,
            )
        if data is None:
            raise MalformedResponseError(f"Gateway returned a non-JSON body for {method} {url}")
        return data

    @staticmethod
    def _parse_body(response: httpx.Response) -> Optional[dict[str, Any]]:
        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    def _debug(self, operation: str, body: dict[str, Any]) -> None:
        if self._options.enabled_debug_logging:
            logger.info("PhonePe %s response: %s", operation, body)

    async def aclose(self) -> None:
        await self._http.aclose()

