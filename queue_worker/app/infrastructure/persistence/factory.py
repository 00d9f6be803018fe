"""Repository factory: selects and assembles persistence adapters."""
from __future__ import annotations

from queue_worker.app.config.settings import Settings
from queue_worker.app.constants import REPOSITORY_BACKEND
from queue_worker.app.infrastructure.persistence.inmemory.in_memory_order_repository import (
    InMemoryOrderRepository,
)
from queue_worker.app.infrastructure.persistence.mongo.connection import create_mongo_client
from queue_worker.app.infrastructure.persistence.mongo.mongo_order_repository import MongoOrderRepository
from queue_worker.app.ports.order_repository import OrderRepository


async def create_order_repository(settings: Settings) -> OrderRepository:
    """Select repository adapter from configuration and return port type."""
    backend = settings.repository_backend.strip().lower()

    if backend == REPOSITORY_BACKEND.MONGO:
        mongo_client = await create_mongo_client(settings)
        repo = MongoOrderRepository(
            mongo_client[settings.database_name][settings.database_collection],
            client=mongo_client,
        )
        await repo.ensure_indexes()
        return repo

    if backend == REPOSITORY_BACKEND.INMEMORY:
        return InMemoryOrderRepository()

    raise ValueError(f"Unsupported repository backend: {backend}")
