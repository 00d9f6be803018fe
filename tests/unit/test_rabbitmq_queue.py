import asyncio

import pytest

from queue_worker.app.application.consumer_loop import ConsumerLoop
from queue_worker.app.constants import DeadLetterReason, MessageState
from queue_worker.app.domain.errors import AckError, AckErrorKind, QueueUnavailableError
from queue_worker.app.domain.order_decoder import OrderDecoder
from queue_worker.app.infrastructure.dead_letter.in_memory_sink import InMemoryDeadLetterSink
from queue_worker.app.infrastructure.messaging.rabbitmq.constants import QueueState
from queue_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_queue import (
    RabbitMQQueue,
    receive_count_of,
)
from tests.fakes import ScriptedHandler


class _FakeIncoming:
    def __init__(self, body: bytes, *, headers=None, redelivered=False, message_id="m-1", ack_raises=None):
        self.body = body
        self.headers = headers or {}
        self.redelivered = redelivered
        self.message_id = message_id
        self._ack_raises = ack_raises
        self.acked = False
        self.requeued = 0

    async def ack(self):
        if self._ack_raises:
            raise self._ack_raises
        self.acked = True

    async def nack(self, requeue: bool = True):
        if requeue:
            self.requeued += 1


class _FakeQueue:
    def __init__(self, messages=None) -> None:
        self.messages = list(messages or [])
        self.get_calls = 0

    async def get(self, no_ack: bool = False, fail: bool = True, timeout: float = 5):
        self.get_calls += 1
        if not self.messages:
            return None
        return self.messages.pop(0)


class _FakeChannel:
    def __init__(self, queue: _FakeQueue) -> None:
        self._queue = queue
        self.declared = []
        self.closed = False

    async def declare_queue(self, name, durable=False, arguments=None):
        self.declared.append((name, durable, arguments))
        return self._queue

    async def close(self):
        self.closed = True


class _FakeConnection:
    def __init__(self, channel: _FakeChannel) -> None:
        self._channel = channel
        self.closed = False

    async def channel(self):
        return self._channel

    async def close(self):
        self.closed = True


class _Settings:
    broker_user = "guest"
    broker_password = "guest"
    broker_host = "localhost"
    broker_port = 5672
    broker_queue_type = "quorum"
    broker_poll_interval_seconds = 0.01
    queue_name = "orders"
    queue_max_length = 1000
    visibility_timeout_seconds = 30.0
    initial_backoff_seconds = 0.0
    max_backoff_seconds = 0.0
    max_connection_attempts = 1
    backoff_multiplier = 2.0


async def _connected(monkeypatch, messages=None, settings=None):
    queue = _FakeQueue(messages)
    channel = _FakeChannel(queue)
    conn = _FakeConnection(channel)

    async def _connect_robust(url):
        return conn

    import queue_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_queue as mod

    monkeypatch.setattr(mod.aio_pika, "connect_robust", _connect_robust)
    rmq = RabbitMQQueue(settings or _Settings())
    await rmq.connect()
    return rmq, queue, channel, conn


def test_receive_count_from_delivery_header_and_redelivered_flag():
    assert receive_count_of(_FakeIncoming(b"", headers={"x-delivery-count": 2})) == 3
    assert receive_count_of(_FakeIncoming(b"", redelivered=True)) == 2
    assert receive_count_of(_FakeIncoming(b"")) == 1
    assert receive_count_of(_FakeIncoming(b"", headers={"x-delivery-count": "bad"}, redelivered=True)) == 2


@pytest.mark.asyncio
async def test_connect_declares_durable_queue_and_sets_ready(monkeypatch):
    rmq, _, channel, _ = await _connected(monkeypatch)

    assert rmq.state == QueueState.READY
    assert channel.declared == [
        (
            "orders",
            True,
            {"x-queue-type": "quorum", "x-max-length": 1000, "x-overflow": "reject-publish"},
        )
    ]


@pytest.mark.asyncio
async def test_connect_failure_leaves_queue_disconnected(monkeypatch):
    async def _connect_robust(url):
        raise ConnectionError("broker down")

    import queue_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_queue as mod

    monkeypatch.setattr(mod.aio_pika, "connect_robust", _connect_robust)
    rmq = RabbitMQQueue(_Settings())
    with pytest.raises(ConnectionError):
        await rmq.connect()
    assert rmq.state == QueueState.DISCONNECTED


@pytest.mark.asyncio
async def test_poll_before_connect_is_rejected():
    with pytest.raises(QueueUnavailableError):
        await RabbitMQQueue(_Settings()).poll(1, 0)


@pytest.mark.asyncio
async def test_poll_maps_deliveries_up_to_max_batch(monkeypatch):
    messages = [
        _FakeIncoming(b'{"order_id": "1"}', message_id="m-1"),
        _FakeIncoming(b"second", headers={"x-delivery-count": 1}, message_id="m-2"),
        _FakeIncoming(b"third", message_id="m-3"),
    ]
    rmq, queue, _, _ = await _connected(monkeypatch, messages)

    batch = await rmq.poll(2, 0)

    assert [m.body for m in batch] == ['{"order_id": "1"}', "second"]
    assert [m.receive_count for m in batch] == [1, 2]
    assert [m.message_id for m in batch] == ["m-1", "m-2"]
    assert len({m.id for m in batch}) == 2
    assert rmq.in_flight == 2
    assert len(queue.messages) == 1


@pytest.mark.asyncio
async def test_invalid_utf8_delivery_is_dead_lettered_by_the_loop(monkeypatch):
    incoming = _FakeIncoming(b"\xff\xfe{\"order_id\"", message_id="m-bin")
    rmq, _, _, _ = await _connected(monkeypatch, [incoming])
    sink = InMemoryDeadLetterSink()
    loop = ConsumerLoop(
        rmq,
        OrderDecoder(),
        ScriptedHandler(),
        max_batch=10,
        wait_time=0,
        max_receive_count=5,
        dead_letter_sink=sink,
    )

    report = await loop.run_once()

    assert [o.state for o in report.outcomes] == [MessageState.DEAD_LETTERED]
    assert [l.reason for l in sink.letters] == [DeadLetterReason.DECODE_ERROR]
    assert incoming.acked is True
    assert incoming.requeued == 0


@pytest.mark.asyncio
async def test_poll_on_empty_queue_waits_then_returns_empty(monkeypatch):
    rmq, queue, _, _ = await _connected(monkeypatch)

    batch = await rmq.poll(10, 0.05)

    assert batch == []
    assert queue.get_calls > 1


@pytest.mark.asyncio
async def test_acknowledge_acks_delivery_once(monkeypatch):
    incoming = _FakeIncoming(b"x")
    rmq, _, _, _ = await _connected(monkeypatch, [incoming])
    [message] = await rmq.poll(1, 0)

    await rmq.acknowledge(message.id)
    assert incoming.acked is True
    assert rmq.in_flight == 0

    with pytest.raises(AckError) as info:
        await rmq.acknowledge(message.id)
    assert info.value.kind is AckErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_acknowledge_after_visibility_timeout_requeues_and_reports_expired(monkeypatch):
    settings = _Settings()
    settings.visibility_timeout_seconds = 0.01
    incoming = _FakeIncoming(b"x")
    rmq, _, _, _ = await _connected(monkeypatch, [incoming], settings=settings)
    [message] = await rmq.poll(1, 0)
    await asyncio.sleep(0.05)

    with pytest.raises(AckError) as info:
        await rmq.acknowledge(message.id)

    assert info.value.kind is AckErrorKind.HANDLE_EXPIRED
    assert incoming.acked is False
    assert incoming.requeued == 1


@pytest.mark.asyncio
async def test_expired_deliveries_are_requeued_before_next_poll(monkeypatch):
    settings = _Settings()
    settings.visibility_timeout_seconds = 0.01
    incoming = _FakeIncoming(b"x")
    rmq, _, _, _ = await _connected(monkeypatch, [incoming], settings=settings)
    await rmq.poll(1, 0)
    await asyncio.sleep(0.05)

    await rmq.poll(1, 0)

    assert incoming.requeued == 1
    assert rmq.in_flight == 0


@pytest.mark.asyncio
async def test_ack_failure_is_unavailable(monkeypatch):
    incoming = _FakeIncoming(b"x", ack_raises=RuntimeError("channel closed"))
    rmq, _, _, _ = await _connected(monkeypatch, [incoming])
    [message] = await rmq.poll(1, 0)

    with pytest.raises(AckError) as info:
        await rmq.acknowledge(message.id)
    assert info.value.kind is AckErrorKind.UNAVAILABLE


@pytest.mark.asyncio
async def test_close_requeues_in_flight_and_closes_channel_and_connection(monkeypatch):
    incoming = _FakeIncoming(b"x")
    rmq, _, channel, conn = await _connected(monkeypatch, [incoming])
    await rmq.poll(1, 0)

    await rmq.close()

    assert incoming.requeued == 1
    assert channel.closed is True
    assert conn.closed is True
    assert rmq.state == QueueState.CLOSED
    assert rmq.in_flight == 0
