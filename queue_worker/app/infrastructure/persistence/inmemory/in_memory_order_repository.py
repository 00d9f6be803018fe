"""Process-local OrderRepository; forgets everything on restart."""
from __future__ import annotations

from queue_worker.app.domain.models import DecodedOrder


class InMemoryOrderRepository:
    def __init__(self) -> None:
        self.orders: dict[str, DecodedOrder] = {}

    async def ensure_indexes(self) -> None:
        return

    async def exists(self, order_id: str) -> bool:
        return order_id in self.orders

    async def record(self, order: DecodedOrder) -> bool:
        if order.order_id in self.orders:
            return False
        self.orders[order.order_id] = order
        return True

    async def close(self) -> None:
        return
