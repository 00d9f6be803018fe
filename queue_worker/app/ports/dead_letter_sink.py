"""Port: append-only destination for messages that will never be processed."""
from __future__ import annotations

from typing import Protocol

from queue_worker.app.domain.models import DeadLetter


class DeadLetterSink(Protocol):
    async def connect(self) -> None: ...

    async def write(self, letter: DeadLetter) -> None:
        """Persist one dead letter; raise DeadLetterError on failure."""
        ...

    async def close(self) -> None: ...
