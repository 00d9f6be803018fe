"""Abstract interface for processed-order bookkeeping (port)."""
from __future__ import annotations

from typing import Protocol

from queue_worker.app.domain.models import DecodedOrder


class OrderRepository(Protocol):
    """Port: remembers which orders were already handled. Implementations live in infrastructure."""

    async def ensure_indexes(self) -> None: ...

    async def exists(self, order_id: str) -> bool: ...

    async def record(self, order: DecodedOrder) -> bool:
        """Store the order once. Returns False when it was already recorded."""
        ...

    async def close(self) -> None:
        """Release resources (e.g. DB client). No-op allowed if nothing to close."""
        ...
