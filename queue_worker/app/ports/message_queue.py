"""Port: the queue the consumer loop drains. Implementations live in infrastructure."""
from __future__ import annotations

from typing import Protocol

from queue_worker.app.domain.models import QueueMessage


class MessageQueue(Protocol):
    async def connect(self) -> None: ...

    async def poll(self, max_batch: int, wait_time: float) -> list[QueueMessage]:
        """Wait up to ``wait_time`` seconds for messages; return at most ``max_batch``.

        An empty list on timeout is normal. Raises QueueUnavailableError when the
        queue cannot be reached. Must be safe to cancel.
        """
        ...

    async def acknowledge(self, handle: str) -> None:
        """Remove the delivery from the queue; raise AckError if the handle is stale or unknown."""
        ...

    async def close(self) -> None: ...
