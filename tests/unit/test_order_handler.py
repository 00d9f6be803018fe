"""Unit tests for OrderHandler idempotency and error mapping."""
from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from queue_worker.app.domain.errors import HandleError, HandleErrorKind
from queue_worker.app.domain.models import DecodedOrder
from queue_worker.app.domain.order_handler import KeyedLock, OrderHandler
from queue_worker.app.infrastructure.persistence.inmemory.in_memory_order_repository import (
    InMemoryOrderRepository,
)
from tests.fakes import FakeRelay

ORDER = DecodedOrder(order_id="123", customer_id="c-1", amount=Decimal("99.99"))


class BrokenRepository(InMemoryOrderRepository):
    def __init__(self, *, fail_exists: bool = False, fail_record: bool = False) -> None:
        super().__init__()
        self._fail_exists = fail_exists
        self._fail_record = fail_record

    async def exists(self, order_id: str) -> bool:
        if self._fail_exists:
            raise ConnectionError("db down")
        return await super().exists(order_id)

    async def record(self, order: DecodedOrder) -> bool:
        if self._fail_record:
            raise ConnectionError("db down")
        return await super().record(order)


def test_handle_twice_has_single_effect():
    repo = InMemoryOrderRepository()
    relay = FakeRelay()
    handler = OrderHandler(repo, relay)

    async def scenario():
        await handler.handle(ORDER)
        await handler.handle(ORDER)

    asyncio.run(scenario())

    assert relay.relayed == [ORDER]
    assert repo.orders == {"123": ORDER}


def test_concurrent_duplicates_relay_once():
    repo = InMemoryOrderRepository()

    class SlowRelay(FakeRelay):
        async def relay(self, order):
            await asyncio.sleep(0.01)
            await super().relay(order)

    relay = SlowRelay()
    handler = OrderHandler(repo, relay)

    async def scenario():
        await asyncio.gather(handler.handle(ORDER), handler.handle(ORDER), handler.handle(ORDER))

    asyncio.run(scenario())

    assert len(relay.relayed) == 1


def test_handler_without_relay_only_records():
    repo = InMemoryOrderRepository()
    asyncio.run(OrderHandler(repo).handle(ORDER))
    assert "123" in repo.orders


def test_transient_relay_failure_does_not_record_order():
    repo = InMemoryOrderRepository()
    relay = FakeRelay([HandleError.transient("503")])
    handler = OrderHandler(repo, relay)

    with pytest.raises(HandleError) as info:
        asyncio.run(handler.handle(ORDER))
    assert info.value.kind is HandleErrorKind.TRANSIENT
    assert repo.orders == {}

    asyncio.run(handler.handle(ORDER))
    assert relay.relayed == [ORDER]
    assert "123" in repo.orders


def test_permanent_relay_failure_propagates():
    handler = OrderHandler(InMemoryOrderRepository(), FakeRelay([HandleError.permanent("400")]))
    with pytest.raises(HandleError) as info:
        asyncio.run(handler.handle(ORDER))
    assert info.value.kind is HandleErrorKind.PERMANENT


@pytest.mark.parametrize("broken", [{"fail_exists": True}, {"fail_record": True}])
def test_repository_errors_are_transient(broken):
    handler = OrderHandler(BrokenRepository(**broken))
    with pytest.raises(HandleError) as info:
        asyncio.run(handler.handle(ORDER))
    assert info.value.kind is HandleErrorKind.TRANSIENT
    assert "db down" in str(info.value)


def test_keyed_lock_releases_entries():
    locks = KeyedLock()

    async def scenario():
        async with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    asyncio.run(scenario())
