"""Tests for error classification and retry with backoff."""

import socket

import pytest

from phonepe_adapter.engine.retry import (
    GatewayConnectionError,
    GatewayHTTPError,
    InvalidRequestError,
    RateLimitError,
    RetriesExhaustedError,
    backoff_delay_ms,
    classify_error,
    execute_with_retry,
    is_indeterminate,
)


class ScriptedCall:
    """Async callable raising the scripted errors in order, then returning `result`."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def no_jitter(low, high):
    return high


class TestClassifyError:
    def test_connection_errors_retry(self):
        assert classify_error(GatewayConnectionError("refused", code="ECONNREFUSED")).retry
        assert classify_error(ConnectionRefusedError()).retry
        assert classify_error(TimeoutError()).retry
        assert classify_error(socket.gaierror()).retry

    def test_rate_limit_retries(self):
        assert classify_error(RateLimitError()).retry

    def test_server_error_is_indeterminate(self):
        result = classify_error(GatewayHTTPError("boom", status_code=503))
        assert not result.retry
        assert result.data == {"indeterminate_due_to": "gateway_server_error"}

    def test_client_error_returns_body(self):
        body = {"code": "BAD_REQUEST", "message": "Invalid amount"}
        result = classify_error(GatewayHTTPError("bad", status_code=400, data=body))
        assert not result.retry
        assert result.data == body

    def test_unknown_error(self):
        result = classify_error(RuntimeError("?"))
        assert not result.retry
        assert result.data == {"indeterminate_due_to": "unknown_error"}


class TestBackoff:
    def test_exponential_growth(self):
        delays = [backoff_delay_ms(attempt, 1000, no_jitter) for attempt in (1, 2, 3)]
        assert delays == [1000, 2000, 4000]

    def test_jitter_lower_bound(self):
        assert backoff_delay_ms(2, 1000, lambda low, high: low) == 1000


class TestExecuteWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        call = ScriptedCall([GatewayConnectionError("refused"), GatewayConnectionError("refused")])
        sleep = RecordingSleep()

        result = await execute_with_retry(call, max_retries=3, base_delay_ms=1000, sleep=sleep, jitter=no_jitter)

        assert result == "ok"
        assert call.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self):
        call = ScriptedCall([GatewayHTTPError("boom", status_code=500)])
        sleep = RecordingSleep()

        result = await execute_with_retry(call, sleep=sleep)

        assert call.calls == 1
        assert sleep.delays == []
        assert is_indeterminate(result)

    @pytest.mark.asyncio
    async def test_definitive_negative_returned_as_data(self):
        body = {"code": "BAD_REQUEST"}
        call = ScriptedCall([GatewayHTTPError("bad", status_code=400, data=body)])

        result = await execute_with_retry(call, sleep=RecordingSleep())

        assert result == body
        assert not is_indeterminate(result)

    @pytest.mark.asyncio
    async def test_exhaustion_raises(self):
        call = ScriptedCall([RateLimitError()] * 5)
        sleep = RecordingSleep()

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await execute_with_retry(call, max_retries=3, sleep=sleep, jitter=no_jitter)

        assert call.calls == 3
        assert len(sleep.delays) == 2
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, RateLimitError)

    @pytest.mark.asyncio
    async def test_invalid_request_passes_through(self):
        call = ScriptedCall([InvalidRequestError("merchantOrderId is required")])

        with pytest.raises(InvalidRequestError):
            await execute_with_retry(call, sleep=RecordingSleep())

        assert call.calls == 1
