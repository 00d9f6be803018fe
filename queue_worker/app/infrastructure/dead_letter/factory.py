"""Dead-letter sink factory. Returns None when dead-lettering is disabled."""
from __future__ import annotations

from queue_worker.app.config.settings import Settings
from queue_worker.app.constants import DEAD_LETTER_BACKEND
from queue_worker.app.infrastructure.dead_letter.in_memory_sink import InMemoryDeadLetterSink
from queue_worker.app.infrastructure.dead_letter.log_sink import LogDeadLetterSink
from queue_worker.app.infrastructure.dead_letter.mongo_sink import MongoDeadLetterSink
from queue_worker.app.infrastructure.dead_letter.sqs_sink import SqsDeadLetterSink
from queue_worker.app.infrastructure.persistence.mongo.connection import create_mongo_client
from queue_worker.app.ports.dead_letter_sink import DeadLetterSink


async def create_dead_letter_sink(settings: Settings) -> DeadLetterSink | None:
    backend = settings.dead_letter_backend.strip().lower()

    if backend == DEAD_LETTER_BACKEND.NONE:
        return None
    if backend == DEAD_LETTER_BACKEND.LOG:
        sink: DeadLetterSink = LogDeadLetterSink()
    elif backend == DEAD_LETTER_BACKEND.INMEMORY:
        sink = InMemoryDeadLetterSink()
    elif backend == DEAD_LETTER_BACKEND.SQS:
        sink = SqsDeadLetterSink(settings)
    elif backend == DEAD_LETTER_BACKEND.MONGO:
        mongo_client = await create_mongo_client(settings)
        sink = MongoDeadLetterSink(
            mongo_client[settings.database_name][settings.dead_letter_collection],
            client=mongo_client,
        )
    else:
        raise ValueError(f"Unsupported dead-letter backend: {backend}")

    await sink.connect()
    return sink
