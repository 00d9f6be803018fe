"""Order handler: the business action applied to every decoded order.

Handling is idempotent. An order already recorded in the repository is
acknowledged as a duplicate without repeating the side effect, and work on the
same ``order_id`` is serialised so two copies in one batch cannot both relay.
The order is recorded only after the relay succeeded, so a transient relay
failure leaves it eligible for the next delivery.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from loguru import logger

from queue_worker.app.core import SERVICE_NAME
from queue_worker.app.domain.errors import HandleError
from queue_worker.app.domain.models import DecodedOrder
from queue_worker.app.domain.order_relay import OrderRelay
from queue_worker.app.ports.order_repository import OrderRepository


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class KeyedLock:
    """One asyncio.Lock per key, dropped again once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class OrderHandler:
    def __init__(self, repository: OrderRepository, relay: OrderRelay | None = None) -> None:
        self._repository = repository
        self._relay = relay
        self._locks = KeyedLock()

    async def handle(self, order: DecodedOrder) -> None:
        async with self._locks.hold(order.order_id):
            try:
                seen = await self._repository.exists(order.order_id)
            except Exception as exc:
                raise HandleError.transient(f"order store lookup failed: {exc}") from exc
            if seen:
                _log("order_duplicate", order_id=order.order_id)
                return

            if self._relay is not None:
                await self._relay.relay(order)

            try:
                await self._repository.record(order)
            except Exception as exc:
                raise HandleError.transient(f"order store write failed: {exc}") from exc

            _log(
                "order_handled",
                order_id=order.order_id,
                customer_id=order.customer_id,
                amount=str(order.amount),
            )
