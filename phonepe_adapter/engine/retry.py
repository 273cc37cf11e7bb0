"""
Error classification and exponential backoff retry for gateway calls.

Transient failures (connection refused, timeouts, DNS, 429 rate limits) are
retried with full-jitter exponential backoff. Everything else is returned as
data rather than raised:

  - 5xx responses leave the real payment state unknown, and blindly retrying
    a payment call can charge twice. The caller gets an indeterminate marker
    and waits for the webhook instead.
  - 4xx responses with a body are a definitive answer from the gateway.

Only exhausted retries raise, so the caller can surface an operational
failure.
"""

import asyncio
import logging
import random
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger("phonepe_adapter.retry")

T = TypeVar("T")

MAX_RETRIES = 3
BASE_DELAY_MS = 1000

RATE_LIMIT_CODE = "RATE_LIMIT_ERROR"
SERVER_ERROR_MARKER = {"indeterminate_due_to": "gateway_server_error"}
UNKNOWN_ERROR_MARKER = {"indeterminate_due_to": "unknown_error"}


class GatewayError(Exception):
    """Base exception for payment gateway errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        data: Optional[dict] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.data = data


class GatewayConnectionError(GatewayError):
    """Connection refused, DNS failure or timeout before a response arrived."""


class GatewayHTTPError(GatewayError):
    """Non-2xx response from the gateway."""


class RateLimitError(GatewayHTTPError):
    """429 Too Many Requests from the gateway."""

    def __init__(self, message: str = "Rate limited", data: Optional[dict] = None):
        super().__init__(message, status_code=429, code=RATE_LIMIT_CODE, data=data)


class MalformedResponseError(GatewayError):
    """2xx response whose body is not the JSON shape we expect."""


class InvalidRequestError(ValueError):
    """Request failed validation before reaching the network. Never retried."""


class RetriesExhaustedError(GatewayError):
    """A retryable error persisted through every allowed attempt."""

    def __init__(self, message: str, attempts: int, last_error: BaseException):
        super().__init__(message, status_code=getattr(last_error, "status_code", None))
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class ErrorClassification:
    """Outcome of classifying a failed gateway call."""

    retry: bool
    data: Optional[dict] = None


def classify_error(error: BaseException) -> ErrorClassification:
    """
    Decide whether a failed call should be retried.

    Pure function of the error. Non-retryable outcomes carry the data to
    hand back to the caller.
    """
    if isinstance(error, (GatewayConnectionError, ConnectionError, TimeoutError, socket.gaierror)):
        return ErrorClassification(retry=True)

    status_code = getattr(error, "status_code", None)
    code = getattr(error, "code", None)

    if status_code == 429 or code == RATE_LIMIT_CODE:
        return ErrorClassification(retry=True)

    if isinstance(status_code, int) and 500 <= status_code < 600:
        return ErrorClassification(retry=False, data=dict(SERVER_ERROR_MARKER))

    data = getattr(error, "data", None)
    if data:
        return ErrorClassification(retry=False, data=data)

    return ErrorClassification(retry=False, data=dict(UNKNOWN_ERROR_MARKER))


def backoff_delay_ms(
    attempt: int,
    base_delay_ms: float = BASE_DELAY_MS,
    jitter: Callable[[float, float], float] = random.uniform,
) -> float:
    """Full-jitter exponential delay before the attempt after `attempt`."""
    return base_delay_ms * (2 ** (attempt - 1)) * jitter(0.5, 1.0)


async def execute_with_retry(
    call: Callable[[], Awaitable[T]],
    max_retries: int = MAX_RETRIES,
    base_delay_ms: float = BASE_DELAY_MS,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    jitter: Callable[[float, float], float] = random.uniform,
) -> Any:
    """
    Execute an async gateway call with bounded exponential backoff.

    Args:
        call: Zero-argument async callable issuing one gateway request.
        max_retries: Total number of attempts, including the first.
        base_delay_ms: Delay before the second attempt, before jitter.
        sleep: Awaitable sleep taking seconds (injectable for tests).
        jitter: Uniform random source (injectable for tests).

    Returns:
        The call's result, or a classification dict for indeterminate and
        definitive-negative outcomes.

    Raises:
        InvalidRequestError: Straight through, never retried.
        RetriesExhaustedError: When retryable failures use up all attempts.
    """
    attempt = 1
    while True:
        try:
            return await call()
        except InvalidRequestError:
            raise
        except Exception as e:
            classification = classify_error(e)

            if not classification.retry:
                logger.warning(
                    "Non-retryable gateway error on attempt %d: %s -> %s",
                    attempt,
                    e,
                    classification.data,
                )
                return classification.data

            if attempt >= max_retries:
                logger.error("Exhausted %d attempts for gateway call: %s", attempt, e)
                raise RetriesExhaustedError(
                    f"Gateway call failed after {attempt} attempts: {e}",
                    attempts=attempt,
                    last_error=e,
                ) from e

            delay = backoff_delay_ms(attempt, base_delay_ms, jitter)
            logger.warning(
                "Retryable error on attempt %d/%d: %s - sleeping %.0fms",
                attempt,
                max_retries,
                e,
                delay,
            )
            await sleep(delay / 1000)
            attempt += 1


def is_indeterminate(result: Any) -> bool:
    return isinstance(result, dict) and "indeterminate_due_to" in result
