"""Message queue factory: selects implementation from config. Only place that imports concrete queues."""
from __future__ import annotations

from queue_worker.app.config.settings import Settings
from queue_worker.app.constants import QUEUE_BACKEND
from queue_worker.app.infrastructure.messaging.inmemory.in_memory_queue import InMemoryQueue
from queue_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_queue import RabbitMQQueue
from queue_worker.app.infrastructure.messaging.sqs.sqs_queue import SqsQueue
from queue_worker.app.ports.message_queue import MessageQueue


def create_message_queue(settings: Settings) -> MessageQueue:
    backend = settings.queue_backend.strip().lower()

    if backend == QUEUE_BACKEND.SQS:
        return SqsQueue(settings)

    if backend == QUEUE_BACKEND.RABBITMQ:
        return RabbitMQQueue(settings)

    if backend == QUEUE_BACKEND.INMEMORY:
        return InMemoryQueue(
            visibility_timeout=settings.visibility_timeout_seconds,
            retention_seconds=settings.retention_seconds,
        )

    raise ValueError(f"Unsupported queue backend: {backend}")
