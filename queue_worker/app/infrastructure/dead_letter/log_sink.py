"""Dead-letter sink that only writes a structured error record to the log."""
from __future__ import annotations

from loguru import logger

from queue_worker.app.core import SERVICE_NAME
from queue_worker.app.domain.models import DeadLetter


class LogDeadLetterSink:
    async def connect(self) -> None:
        return

    async def write(self, letter: DeadLetter) -> None:
        logger.bind(service_name=SERVICE_NAME, event="dead_letter", **letter.to_dict()).error("")

    async def close(self) -> None:
        return
