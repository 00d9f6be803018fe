"""Worker composition root: build and lifecycle-manage concrete dependencies.

Composition may: import concrete classes, call factories, store interface types,
manage high-level lifecycle.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from queue_worker.app.application.consumer_loop import ConsumerLoop
from queue_worker.app.config.settings import Settings
from queue_worker.app.core import SERVICE_NAME
from queue_worker.app.domain.order_decoder import OrderDecoder
from queue_worker.app.domain.order_handler import OrderHandler
from queue_worker.app.domain.order_relay import OrderRelay
from queue_worker.app.infrastructure.dead_letter.factory import create_dead_letter_sink
from queue_worker.app.infrastructure.http.factory import create_http_client
from queue_worker.app.infrastructure.messaging.factory import create_message_queue
from queue_worker.app.infrastructure.persistence.factory import create_order_repository
from queue_worker.app.ports.dead_letter_sink import DeadLetterSink
from queue_worker.app.ports.http_client import AbstractHttpClient
from queue_worker.app.ports.message_queue import MessageQueue
from queue_worker.app.ports.order_repository import OrderRepository


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class WorkerDependencies:
    """Holds wired worker dependencies and their lifecycle."""

    def __init__(self, *, settings: Settings) -> None:
        self._settings = settings
        self._repository: OrderRepository | None = None
        self._queue: MessageQueue | None = None
        self._dead_letter_sink: DeadLetterSink | None = None
        self._http_client: AbstractHttpClient | None = None
        self._consumer_loop: ConsumerLoop | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def queue(self) -> MessageQueue:
        if self._queue is None:
            raise RuntimeError("queue is not initialized")
        return self._queue

    @property
    def repository(self) -> OrderRepository:
        if self._repository is None:
            raise RuntimeError("repository is not initialized")
        return self._repository

    @property
    def dead_letter_sink(self) -> DeadLetterSink | None:
        return self._dead_letter_sink

    @property
    def consumer_loop(self) -> ConsumerLoop:
        if self._consumer_loop is None:
            raise RuntimeError("consumer_loop is not initialized")
        return self._consumer_loop

    async def connect(self) -> None:
        settings = self._settings
        try:
            self._repository = await create_order_repository(settings)
            self._dead_letter_sink = await create_dead_letter_sink(settings)

            self._queue = create_message_queue(settings)
            await self._queue.connect()

            relay: OrderRelay | None = None
            if settings.relay_url:
                self._http_client = create_http_client(settings)
                relay = OrderRelay(
                    self._http_client,
                    settings.relay_url,
                    settings.relay_timeout_seconds,
                )
        except Exception:
            await self.close()
            raise

        self._consumer_loop = ConsumerLoop(
            self._queue,
            OrderDecoder(unwrap_sns_envelope=settings.unwrap_sns_envelope),
            OrderHandler(self._repository, relay),
            max_batch=settings.max_batch,
            wait_time=settings.wait_time_seconds,
            max_receive_count=settings.max_receive_count,
            dead_letter_sink=self._dead_letter_sink,
            max_concurrency=settings.max_concurrency,
            poll_error_backoff_seconds=settings.poll_error_backoff_seconds,
        )
        _log(
            "worker_dependencies_ready",
            queue_backend=settings.queue_backend,
            dead_letter_backend=settings.dead_letter_backend,
            repository_backend=settings.repository_backend,
            relay_enabled=relay is not None,
        )

    async def close(self) -> None:
        if self._queue is not None:
            try:
                await self._queue.close()
            except Exception as exc:
                logger.warning("queue close failed: {}", exc)
            self._queue = None

        if self._dead_letter_sink is not None:
            try:
                await self._dead_letter_sink.close()
            except Exception as exc:
                logger.warning("dead-letter sink close failed: {}", exc)
            self._dead_letter_sink = None

        if self._http_client is not None:
            try:
                await self._http_client.close()
            except Exception as exc:
                logger.warning("http client close failed: {}", exc)
            self._http_client = None

        if self._repository is not None:
            try:
                await self._repository.close()
            except Exception as exc:
                logger.warning("repository close failed: {}", exc)
            self._repository = None

        self._consumer_loop = None


def create_worker_dependencies(settings: Settings | None = None) -> WorkerDependencies:
    return WorkerDependencies(settings=settings or Settings())
