"""MongoDB implementation of OrderRepository."""
from __future__ import annotations

import inspect
from datetime import datetime, timezone
from typing import Any

from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorCollection

from queue_worker.app.domain.models import DecodedOrder


class MongoOrderRepository:
    """Concrete implementation of OrderRepository using MongoDB."""

    def __init__(self, collection: AsyncIOMotorCollection, *, client: Any | None = None) -> None:
        self._collection = collection
        self._client = client

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("order_id", unique=True, name="uq_processed_order_id")
        await self._collection.create_index("recorded_at", name="idx_processed_recorded_at")

    async def exists(self, order_id: str) -> bool:
        doc = await self._collection.find_one({"order_id": order_id}, projection={"_id": 1})
        return doc is not None

    async def record(self, order: DecodedOrder) -> bool:
        result = await self._collection.update_one(
            {"order_id": order.order_id},
            {
                "$setOnInsert": {
                    "order_id": order.order_id,
                    "customer_id": order.customer_id,
                    "amount": Decimal128(order.amount),
                    "recorded_at": datetime.now(timezone.utc),
                },
            },
            upsert=True,
        )
        return result.upserted_id is not None

    async def close(self) -> None:
        """Close underlying Mongo client when owned by this adapter."""
        if self._client is not None:
            res = self._client.close()
            if inspect.isawaitable(res):
                await res
