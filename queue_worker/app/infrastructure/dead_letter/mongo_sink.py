"""Dead-letter sink backed by a MongoDB collection."""
from __future__ import annotations

import inspect
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from queue_worker.app.domain.errors import DeadLetterError
from queue_worker.app.domain.models import DeadLetter


class MongoDeadLetterSink:
    def __init__(self, collection: AsyncIOMotorCollection, *, client: Any | None = None) -> None:
        self._collection = collection
        self._client = client

    async def connect(self) -> None:
        await self._collection.create_index("failed_at", name="idx_dead_letter_failed_at")
        await self._collection.create_index("message_id", name="idx_dead_letter_message_id")

    async def write(self, letter: DeadLetter) -> None:
        document = letter.to_dict()
        # keep failed_at as a BSON date so it can be range-queried
        document["failed_at"] = letter.failed_at
        try:
            await self._collection.insert_one(document)
        except PyMongoError as exc:
            raise DeadLetterError(f"mongo dead-letter insert failed: {exc}") from exc

    async def close(self) -> None:
        if self._client is not None:
            res = self._client.close()
            if inspect.isawaitable(res):
                await res
