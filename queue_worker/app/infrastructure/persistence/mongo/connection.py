"""Mongo client connection helper (provider-specific infrastructure)."""
from __future__ import annotations

import inspect

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient

from queue_worker.app.config.settings import Settings
from queue_worker.app.core.backoff import connect_with_backoff


def build_mongo_uri(settings: Settings) -> str:
    user, password = settings.database_user, settings.database_password
    if user and password:
        return f"mongodb://{user}:{password}@{settings.database_host}:{settings.database_port}"
    return f"mongodb://{settings.database_host}:{settings.database_port}"


async def create_mongo_client(settings: Settings) -> AsyncIOMotorClient:
    """Connect to Mongo with retry/backoff and return a client that answered a ping."""

    async def attempt() -> AsyncIOMotorClient:
        client = AsyncIOMotorClient(
            build_mongo_uri(settings),
            serverSelectionTimeoutMS=settings.database_connection_timeout_ms,
        )
        try:
            await client.admin.command("ping")
        except Exception:
            res = client.close()
            if inspect.isawaitable(res):
                await res
            raise
        return client

    client = await connect_with_backoff(
        "mongo",
        attempt,
        initial_delay=settings.initial_backoff_seconds,
        max_delay=settings.max_backoff_seconds,
        multiplier=settings.backoff_multiplier,
        max_attempts=settings.max_connection_attempts,
    )
    logger.debug("mongo client ready for database {}", settings.database_name)
    return client
