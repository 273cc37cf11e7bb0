"""
Short-lived order-status cache with in-flight de-duplication.

One logical payment-state check often polls the same order several times
(authorize, then capture, then retrieve). Entries live for a few seconds and
concurrent lookups for the same key share a single gateway call.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from phonepe_adapter.gateway.base import OrderStatus, PaymentGateway

logger = logging.getLogger("phonepe_adapter.status_cache")

DEFAULT_TTL_SECONDS = 5.0

CacheKey = tuple[str, bool]


@dataclass(frozen=True)
class StatusCacheEntry:
    data: OrderStatus
    expires_at: float


class StatusCache:
    """Status lookups for one gateway client. Not shared across configurations."""

    def __init__(
        self,
        gateway: PaymentGateway,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._gateway = gateway
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, StatusCacheEntry] = {}
        self._in_flight: dict[CacheKey, asyncio.Future] = {}
        # Bumped by invalidate(); a fetch started under an older generation
        # must not write its result back.
        self._generations: dict[str, int] = {}

    async def get_status(self, merchant_order_id: str, with_details: bool = True) -> OrderStatus:
        """
        Return the order status, from cache when fresh.

        Raises whatever the gateway raised; failures are never cached.
        """
        key = (merchant_order_id, with_details)

        entry = self._entries.get(key)
        if entry is not None:
            if entry.expires_at > self._clock():
                return entry.data
            del self._entries[key]

        pending = self._in_flight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch(key, self._generations.get(merchant_order_id, 0)))
            self._in_flight[key] = pending
            pending.add_done_callback(lambda fut: self._settle(key, fut))
        else:
            logger.debug("Joining in-flight status lookup for %s", merchant_order_id)

        return await asyncio.shield(pending)

    async def _fetch(self, key: CacheKey, generation: int) -> OrderStatus:
        merchant_order_id, with_details = key
        status = await self._gateway.get_order_status(merchant_order_id, with_details)
        if self._generations.get(merchant_order_id, 0) == generation:
            self._entries[key] = StatusCacheEntry(data=status, expires_at=self._clock() + self._ttl)
        else:
            logger.debug("Discarding status for %s fetched before invalidation", merchant_order_id)
        return status

    def _settle(self, key: CacheKey, fut: asyncio.Future) -> None:
        if self._in_flight.get(key) is fut:
            del self._in_flight[key]

    def invalidate(self, merchant_order_id: str) -> None:
        """
        Forget every cached or in-flight lookup for the order.

        Callers already awaiting an in-flight lookup still get its result, but
        later lookups start a fresh gateway call.
        """
        self._generations[merchant_order_id] = self._generations.get(merchant_order_id, 0) + 1
        for key in [k for k in self._entries if k[0] == merchant_order_id]:
            del self._entries[key]
        for key in [k for k in self._in_flight if k[0] == merchant_order_id]:
            del self._in_flight[key]
