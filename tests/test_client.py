"""Tests for the httpx-backed PhonePe client, against httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from phonepe_adapter.engine.retry import (
    GatewayConnectionError,
    GatewayHTTPError,
    InvalidRequestError,
    MalformedResponseError,
    RateLimitError,
)
from phonepe_adapter.gateway.base import PaymentRequest, RefundRequest, ValidatedCallback
from phonepe_adapter.gateway.client import PhonePeClient

SANDBOX = "https://api-preprod.phonepe.com/apis/pg-sandbox"
ORDER_ID = "cart_01HTESTCART_1_abc123"


class FakeGateway:
    """Minimal PhonePe sandbox: records requests and answers from `routes`."""

    def __init__(self, routes=None, token_delay=0.0):
        self.requests: list[httpx.Request] = []
        self.token_requests = 0
        self.routes = routes or {}
        self.token_delay = token_delay

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/v1/oauth/token"):
            self.token_requests += 1
            if self.token_delay:
                await asyncio.sleep(self.token_delay)
            return httpx.Response(200, json={"access_token": f"token-{self.token_requests}", "expires_in": 3600})

        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"code": "NOT_FOUND"})
        return route(request) if callable(route) else route


def make_client(settings, gateway, clock=None, webhook_validator=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler))
    kwargs = {"http_client": http, "webhook_validator": webhook_validator}
    if clock is not None:
        kwargs["clock"] = clock
    return PhonePeClient(settings, **kwargs)


def status_path(merchant_order_id):
    return f"/apis/pg-sandbox/checkout/v2/order/{merchant_order_id}/status"


def completed_status(request):
    return httpx.Response(
        200,
        json={"orderId": "OMO123", "state": "COMPLETED", "amount": 10000, "paymentDetails": []},
    )


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_token_request_shape(self, settings):
        gateway = FakeGateway()
        client = make_client(settings, gateway)

        token = await client.authenticate()

        assert token == "token-1"
        request = gateway.requests[0]
        assert str(request.url) == f"{SANDBOX}/v1/oauth/token"
        form = dict(pair.split("=") for pair in request.content.decode().split("&"))
        assert form == {
            "client_id": "TEST_CLIENT",
            "client_version": "1",
            "client_secret": "test-secret",
            "grant_type": "client_credentials",
        }
        await client.aclose()

    @pytest.mark.asyncio
    async def test_token_cached_until_refresh_margin(self, settings):
        gateway = FakeGateway()
        now = [1000.0]
        client = make_client(settings, gateway, clock=lambda: now[0])

        await client.authenticate()
        now[0] += 3600 - 301
        assert await client.authenticate() == "token-1"

        now[0] += 2  # inside the five-minute refresh margin
        assert await client.authenticate() == "token-2"
        assert gateway.token_requests == 2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_concurrent_acquisition_single_flight(self, settings):
        gateway = FakeGateway(token_delay=0.02)
        client = make_client(settings, gateway)

        tokens = await asyncio.gather(*(client.authenticate() for _ in range(5)))

        assert set(tokens) == {"token-1"}
        assert gateway.token_requests == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_token_cache_disabled(self, settings):
        settings.token_cache_enabled = False
        gateway = FakeGateway()
        client = make_client(settings, gateway)

        await client.authenticate()
        await client.authenticate()

        assert gateway.token_requests == 2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_access_token(self, settings):
        async def handler(request):
            return httpx.Response(200, json={"expires_in": 3600})

        client = PhonePeClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(MalformedResponseError):
            await client.authenticate()
        await client.aclose()


class TestOrderStatus:
    @pytest.mark.asyncio
    async def test_status_request(self, settings):
        gateway = FakeGateway(routes={("GET", status_path(ORDER_ID)): completed_status})
        client = make_client(settings, gateway)

        status = await client.get_order_status(ORDER_ID)

        assert status.state == "COMPLETED"
        assert status.order_id == "OMO123"
        assert status.merchant_order_id == ORDER_ID
        request = gateway.requests[-1]
        assert request.headers["Authorization"] == "O-Bearer token-1"
        assert request.url.params["details"] == "true"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_status_without_details(self, settings):
        gateway = FakeGateway(routes={("GET", status_path(ORDER_ID)): completed_status})
        client = make_client(settings, gateway)

        await client.get_order_status(ORDER_ID, with_details=False)

        assert gateway.requests[-1].url.params["details"] == "false"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_invalid_id_rejected_before_network(self, settings):
        gateway = FakeGateway()
        client = make_client(settings, gateway)

        with pytest.raises(InvalidRequestError):
            await client.get_order_status("x" * 51)

        assert gateway.requests == []
        await client.aclose()


class TestPayments:
    @pytest.mark.asyncio
    async def test_create_payment(self, settings):
        captured = {}

        def pay(request):
            captured.update(json.loads(request.content))
            return httpx.Response(
                200,
                json={"orderId": "OMO456", "state": "PENDING", "redirectUrl": "https://pay.example/x", "expireAt": 1},
            )

        gateway = FakeGateway(routes={("POST", "/apis/pg-sandbox/checkout/v2/pay"): pay})
        client = make_client(settings, gateway)

        response = await client.create_payment(
            PaymentRequest(
                merchant_order_id=ORDER_ID,
                amount=10050,
                redirect_url=settings.redirect_url,
                expire_after=1800,
                meta_info={"udf1": "cus_1"},
            )
        )

        assert response.order_id == "OMO456"
        assert response.redirect_url == "https://pay.example/x"
        assert captured["merchantOrderId"] == ORDER_ID
        assert captured["amount"] == 10050
        assert captured["expireAfter"] == 1800
        assert captured["paymentFlow"]["type"] == "PG_CHECKOUT"
        assert captured["paymentFlow"]["merchantUrls"]["redirectUrl"] == settings.redirect_url
        assert captured["metaInfo"] == {"udf1": "cus_1"}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_invalid_amount_rejected_before_network(self, settings):
        gateway = FakeGateway()
        client = make_client(settings, gateway)

        with pytest.raises(InvalidRequestError):
            await client.create_payment(
                PaymentRequest(merchant_order_id=ORDER_ID, amount=0, redirect_url=settings.redirect_url)
            )

        assert gateway.requests == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_expire_after_out_of_bounds(self, settings):
        gateway = FakeGateway()
        client = make_client(settings, gateway)

        with pytest.raises(InvalidRequestError):
            await client.create_payment(
                PaymentRequest(
                    merchant_order_id=ORDER_ID,
                    amount=100,
                    redirect_url=settings.redirect_url,
                    expire_after=60,
                )
            )
        await client.aclose()

    @pytest.mark.asyncio
    async def test_malformed_payment_response(self, settings):
        gateway = FakeGateway(
            routes={("POST", "/apis/pg-sandbox/checkout/v2/pay"): httpx.Response(200, json={"state": "PENDING"})}
        )
        client = make_client(settings, gateway)

        with pytest.raises(MalformedResponseError):
            await client.create_payment(
                PaymentRequest(merchant_order_id=ORDER_ID, amount=100, redirect_url=settings.redirect_url)
            )
        await client.aclose()


class TestRefunds:
    @pytest.mark.asyncio
    async def test_create_refund(self, settings):
        gateway = FakeGateway(
            routes={
                ("POST", "/apis/pg-sandbox/payments/v2/refund"): httpx.Response(
                    200, json={"refundId": "OMR1", "amount": 500, "state": "PENDING"}
                ),
            }
        )
        client = make_client(settings, gateway)

        refund = await client.create_refund(
            RefundRequest(merchant_refund_id=f"{ORDER_ID}_refund_1", original_merchant_order_id=ORDER_ID, amount=500)
        )

        assert refund.refund_id == "OMR1"
        assert refund.state == "PENDING"
        assert json.loads(gateway.requests[-1].content)["originalMerchantOrderId"] == ORDER_ID
        await client.aclose()

    @pytest.mark.asyncio
    async def test_refund_status(self, settings):
        gateway = FakeGateway(
            routes={
                ("GET", "/apis/pg-sandbox/payments/v2/refund/R1/status"): httpx.Response(
                    200, json={"refundId": "OMR1", "amount": 500, "state": "COMPLETED"}
                ),
            }
        )
        client = make_client(settings, gateway)

        refund = await client.get_refund_status("R1")

        assert refund.state == "COMPLETED"
        await client.aclose()


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_rate_limit(self, settings):
        gateway = FakeGateway(routes={("GET", status_path(ORDER_ID)): httpx.Response(429, json={})})
        client = make_client(settings, gateway)

        with pytest.raises(RateLimitError) as exc_info:
            await client.get_order_status(ORDER_ID)

        assert exc_info.value.status_code == 429
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_error(self, settings):
        gateway = FakeGateway(
            routes={("GET", status_path(ORDER_ID)): httpx.Response(503, json={"code": "INTERNAL_SERVER_ERROR"})}
        )
        client = make_client(settings, gateway)

        with pytest.raises(GatewayHTTPError) as exc_info:
            await client.get_order_status(ORDER_ID)

        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "INTERNAL_SERVER_ERROR"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_refused(self, settings):
        async def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = PhonePeClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(GatewayConnectionError) as exc_info:
            await client.authenticate()

        assert exc_info.value.code == "ECONNREFUSED"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_body(self, settings):
        gateway = FakeGateway(routes={("GET", status_path(ORDER_ID)): httpx.Response(200, text="<html>")})
        client = make_client(settings, gateway)

        with pytest.raises(MalformedResponseError):
            await client.get_order_status(ORDER_ID)
        await client.aclose()


class AcceptingValidator:
    def __init__(self):
        self.calls = []

    def validate_callback(self, username, password, authorization, body):
        self.calls.append((username, password, authorization))
        data = json.loads(body)
        return ValidatedCallback(type=data["type"], payload=data["payload"])


class RejectingValidator:
    def validate_callback(self, username, password, authorization, body):
        raise ValueError("Invalid callback")


class TestWebhookValidation:
    BODY = json.dumps({"type": "PG_ORDER_COMPLETED", "payload": {"merchantOrderId": ORDER_ID}})

    @pytest.mark.asyncio
    async def test_no_credentials(self, settings):
        client = make_client(settings, FakeGateway(), webhook_validator=AcceptingValidator())

        assert await client.validate_webhook_signature("auth", self.BODY) is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_validated_with_credentials(self, settings):
        settings.merchant_username = "merchant"
        settings.merchant_password = "secret"
        validator = AcceptingValidator()
        client = make_client(settings, FakeGateway(), webhook_validator=validator)

        callback = await client.validate_webhook_signature("auth", self.BODY)

        assert callback.type == "PG_ORDER_COMPLETED"
        assert callback.payload["merchantOrderId"] == ORDER_ID
        assert validator.calls == [("merchant", "secret", "auth")]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_rejected_callback(self, settings):
        settings.merchant_username = "merchant"
        settings.merchant_password = "secret"
        client = make_client(settings, FakeGateway(), webhook_validator=RejectingValidator())

        assert await client.validate_webhook_signature("auth", self.BODY) is None
        await client.aclose()
