"""
RabbitMQ queue: pull-mode MessageQueue on top of aio_pika.

Lifecycle:
  DISCONNECTED -> CONNECTING (backoff) -> CONNECTED -> READY (channel open, queue declared).
  aio_pika's robust connection restores channel and queue after a broker drop.
  On close: READY -> CLOSING -> requeue unacked deliveries, close channel/connection -> CLOSED.

Visibility:
  AMQP has no visibility timeout; an unacked delivery stays with this channel.
  Each delivery gets a deadline of visibility_timeout_seconds. Before every poll,
  deliveries past their deadline are nacked with requeue, which is what a
  managed queue does when the timeout elapses. Acknowledging such a delivery
  raises AckError(handle-expired).

Receive count:
  Quorum queues report prior deliveries in x-delivery-count, so
  receive_count = x-delivery-count + 1. Classic queues only expose the
  redelivered flag, which maps to 2.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any

import aio_pika
from aio_pika.abc import AbstractIncomingMessage
from loguru import logger

from queue_worker.app.config.settings import Settings
from queue_worker.app.core import SERVICE_NAME
from queue_worker.app.core.backoff import connect_with_backoff
from queue_worker.app.domain.errors import AckError, AckErrorKind, QueueUnavailableError
from queue_worker.app.domain.models import QueueMessage
from queue_worker.app.infrastructure.messaging.rabbitmq.constants import (
    DELIVERY_COUNT_HEADER,
    QueueState,
)

BROKER_GET_TIMEOUT_SECONDS = 5


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def receive_count_of(message: AbstractIncomingMessage) -> int:
    headers = message.headers or {}
    delivery_count = headers.get(DELIVERY_COUNT_HEADER)
    if delivery_count is not None:
        try:
            return int(delivery_count) + 1
        except (TypeError, ValueError):
            logger.warning("ignoring non-numeric {} header: {!r}", DELIVERY_COUNT_HEADER, delivery_count)
    return 2 if message.redelivered else 1


@dataclass
class _Delivery:
    message: AbstractIncomingMessage
    deadline: float


class RabbitMQQueue:
    """MessageQueue implementation"""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._state = QueueState.DISCONNECTED
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._queue: aio_pika.abc.AbstractQueue | None = None
        self._pending: dict[str, _Delivery] = {}

    @property
    def state(self) -> QueueState:
        return self._state

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def _set_state(self, state: QueueState) -> None:
        self._state = state

    def _build_amqp_url(self) -> str:
        return (
            f"amqp://{self._settings.broker_user}:{self._settings.broker_password}"
            f"@{self._settings.broker_host}:{self._settings.broker_port}/"
        )

    def _queue_arguments(self) -> dict[str, Any]:
        arguments: dict[str, Any] = {}
        if self._settings.broker_queue_type:
            arguments["x-queue-type"] = self._settings.broker_queue_type
        if self._settings.queue_max_length > 0:
            arguments["x-max-length"] = self._settings.queue_max_length
            arguments["x-overflow"] = "reject-publish"
        return arguments

    async def connect(self) -> None:
        self._set_state(QueueState.CONNECTING)
        try:
            self._connection = await connect_with_backoff(
                "rmq",
                lambda: aio_pika.connect_robust(self._build_amqp_url()),
                initial_delay=self._settings.initial_backoff_seconds,
                max_delay=self._settings.max_backoff_seconds,
                multiplier=self._settings.backoff_multiplier,
                max_attempts=self._settings.max_connection_attempts,
            )
        except Exception:
            self._set_state(QueueState.DISCONNECTED)
            raise
        self._set_state(QueueState.CONNECTED)
        self._channel = await self._connection.channel()
        self._queue = await self._channel.declare_queue(
            self._settings.queue_name,
            durable=True,
            arguments=self._queue_arguments(),
        )
        self._set_state(QueueState.READY)
        _log("rmq_queue_declared", queue_name=self._settings.queue_name)

    async def poll(self, max_batch: int, wait_time: float) -> list[QueueMessage]:
        if self._queue is None or self._state is not QueueState.READY:
            raise QueueUnavailableError("rabbitmq queue not connected")
        await self._requeue_expired()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(wait_time, 0.0)
        batch: list[QueueMessage] = []
        while len(batch) < max_batch:
            try:
                incoming = await self._queue.get(
                    no_ack=False, fail=False, timeout=BROKER_GET_TIMEOUT_SECONDS
                )
            except (aio_pika.exceptions.AMQPError, asyncio.TimeoutError) as exc:
                if batch:
                    logger.warning("rmq get failed mid-batch, returning {} messages: {}", len(batch), exc)
                    break
                raise QueueUnavailableError(f"rabbitmq get failed: {exc}") from exc
            if incoming is None:
                remaining = deadline - loop.time()
                if batch or remaining <= 0:
                    break
                await asyncio.sleep(min(self._settings.broker_poll_interval_seconds, remaining))
                continue
            batch.append(self._track(incoming, loop.time()))
        return batch

    async def acknowledge(self, handle: str) -> None:
        delivery = self._pending.pop(handle, None)
        if delivery is None:
            raise AckError(AckErrorKind.NOT_FOUND, f"unknown delivery handle {handle!r}")
        if asyncio.get_running_loop().time() >= delivery.deadline:
            await self._requeue(handle, delivery)
            raise AckError(AckErrorKind.HANDLE_EXPIRED, "delivery exceeded its visibility timeout")
        try:
            await delivery.message.ack()
        except Exception as exc:
            raise AckError(AckErrorKind.UNAVAILABLE, f"rabbitmq ack failed: {exc}") from exc

    def _track(self, incoming: AbstractIncomingMessage, now: float) -> QueueMessage:
        handle = uuid.uuid4().hex
        self._pending[handle] = _Delivery(
            message=incoming,
            deadline=now + self._settings.visibility_timeout_seconds,
        )
        return QueueMessage(
            id=handle,
            body=incoming.body.decode("utf-8", errors="replace"),
            receive_count=receive_count_of(incoming),
            message_id=incoming.message_id or "",
            attributes=dict(incoming.headers or {}),
        )

    async def _requeue_expired(self) -> None:
        now = asyncio.get_running_loop().time()
        expired = [(h, d) for h, d in self._pending.items() if d.deadline <= now]
        for handle, delivery in expired:
            self._pending.pop(handle, None)
            await self._requeue(handle, delivery)

    async def _requeue(self, handle: str, delivery: _Delivery) -> None:
        try:
            await delivery.message.nack(requeue=True)
            _log("rmq_delivery_requeued", handle=handle, message_id=delivery.message.message_id or "")
        except Exception as e:
            logger.warning("rmq requeue failed for {}: {}", handle, e)

    async def close(self) -> None:
        self._set_state(QueueState.CLOSING)
        _log("rmq_queue_closing", in_flight=len(self._pending))
        pending, self._pending = self._pending, {}
        for handle, delivery in pending.items():
            await self._requeue(handle, delivery)
        self._queue = None
        if self._channel:
            try:
                await self._channel.close()
            except Exception as e:
                logger.warning("channel close failed (continuing to close connection): {}", e)
            self._channel = None
        if self._connection:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("connection close failed: {}", e)
            self._connection = None
        self._set_state(QueueState.CLOSED)
