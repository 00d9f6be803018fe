"""Factories, WorkerDependencies wiring and the worker entrypoint with in-memory backends."""
from __future__ import annotations

import asyncio

import pytest

import queue_worker.app.main as main_mod
from queue_worker.app.composition import WorkerDependencies, create_worker_dependencies
from queue_worker.app.config.settings import Settings
from queue_worker.app.constants import MessageState
from queue_worker.app.infrastructure.dead_letter.factory import create_dead_letter_sink
from queue_worker.app.infrastructure.dead_letter.in_memory_sink import InMemoryDeadLetterSink
from queue_worker.app.infrastructure.dead_letter.log_sink import LogDeadLetterSink
from queue_worker.app.infrastructure.messaging.factory import create_message_queue
from queue_worker.app.infrastructure.messaging.inmemory.in_memory_queue import InMemoryQueue
from queue_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_queue import RabbitMQQueue
from queue_worker.app.infrastructure.messaging.sqs.sqs_queue import SqsQueue
from queue_worker.app.infrastructure.persistence.factory import create_order_repository
from tests.fakes import order_body


def _with(settings: Settings, **changes) -> Settings:
    return settings.model_copy(update=changes)


def test_message_queue_factory_selects_backend(settings):
    assert isinstance(create_message_queue(settings), InMemoryQueue)
    assert isinstance(create_message_queue(_with(settings, queue_backend="sqs")), SqsQueue)
    assert isinstance(create_message_queue(_with(settings, queue_backend="rabbitmq")), RabbitMQQueue)


@pytest.mark.parametrize(
    ("factory", "field"),
    [
        (create_message_queue, "queue_backend"),
        (create_dead_letter_sink, "dead_letter_backend"),
        (create_order_repository, "repository_backend"),
    ],
)
def test_factories_reject_unknown_backend(settings, factory, field):
    bad = _with(settings, **{field: "kafka"})

    async def build():
        result = factory(bad)
        if asyncio.iscoroutine(result):
            await result

    with pytest.raises(ValueError, match="kafka"):
        asyncio.run(build())


def test_dead_letter_factory_backends(settings):
    assert asyncio.run(create_dead_letter_sink(_with(settings, dead_letter_backend="none"))) is None
    assert isinstance(asyncio.run(create_dead_letter_sink(_with(settings, dead_letter_backend="log"))), LogDeadLetterSink)
    assert isinstance(asyncio.run(create_dead_letter_sink(settings)), InMemoryDeadLetterSink)


def test_worker_dependencies_wire_inmemory_backends(settings):
    deps = create_worker_dependencies(settings)

    async def scenario():
        await deps.connect()
        queue = deps.queue
        queue.send(order_body("1"), message_id="m-1")
        queue.send("not json", message_id="m-2")
        report = await deps.consumer_loop.run_once()
        letters = list(deps.dead_letter_sink.letters)
        orders = dict(deps.repository.orders)
        await deps.close()
        return report, letters, orders

    report, letters, orders = asyncio.run(scenario())

    assert report.acknowledged == 1
    assert report.dead_lettered == 1
    assert [l.message_id for l in letters] == ["m-2"]
    assert list(orders) == ["1"]
    with pytest.raises(RuntimeError):
        _ = deps.consumer_loop


def test_connect_failure_closes_what_was_opened(settings):
    deps = WorkerDependencies(settings=_with(settings, queue_backend="kafka"))

    with pytest.raises(ValueError):
        asyncio.run(deps.connect())

    assert deps.dead_letter_sink is None
    with pytest.raises(RuntimeError):
        _ = deps.repository


def test_run_worker_closes_dependencies_when_loop_returns(settings, monkeypatch):
    closed = []

    class _Loop:
        async def run(self, shutdown):
            return

    class _Deps:
        consumer_loop = _Loop()

        async def connect(self):
            return

        async def close(self):
            closed.append(True)

    monkeypatch.setattr(main_mod, "create_worker_dependencies", lambda s: _Deps())

    asyncio.run(main_mod.run_worker(settings))

    assert closed == [True]


def test_run_once_reports_states_through_composed_loop(settings):
    deps = create_worker_dependencies(_with(settings, dead_letter_backend="none"))

    async def scenario():
        await deps.connect()
        deps.queue.send("[]")
        report = await deps.consumer_loop.run_once()
        await deps.close()
        return report

    report = asyncio.run(scenario())
    assert [o.state for o in report.outcomes] == [MessageState.DROPPED]
