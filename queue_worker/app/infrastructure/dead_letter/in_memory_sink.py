"""In-memory dead-letter sink for tests and local mode."""
from __future__ import annotations

from queue_worker.app.domain.models import DeadLetter


class InMemoryDeadLetterSink:
    def __init__(self) -> None:
        self.letters: list[DeadLetter] = []

    async def connect(self) -> None:
        return

    async def write(self, letter: DeadLetter) -> None:
        self.letters.append(letter)

    async def close(self) -> None:
        return
