"""In-memory queue for tests and local mode.

Behaves like a standard (non-FIFO) managed queue: a received message is hidden
for the visibility timeout, reappears with a new handle and a higher receive
count if nobody acknowledged it, and is discarded once older than the retention
period. The clock is injectable so tests can step past timeouts.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from queue_worker.app.core import SERVICE_NAME
from queue_worker.app.domain.errors import AckError, AckErrorKind
from queue_worker.app.domain.models import QueueMessage

_MIN_RECHECK_SECONDS = 0.01


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


@dataclass
class _Entry:
    message_id: str
    body: str
    sent_at: float
    visible_at: float
    receive_count: int = 0
    handle: str | None = None
    handles: list[str] = field(default_factory=list)


class InMemoryQueue:
    def __init__(
        self,
        *,
        visibility_timeout: float,
        retention_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if visibility_timeout <= 0:
            raise ValueError("visibility_timeout must be > 0")
        self._visibility_timeout = visibility_timeout
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._handles: dict[str, str] = {}
        self._changed = asyncio.Event()
        self.acknowledged: list[str] = []

    async def connect(self) -> None:
        return

    async def close(self) -> None:
        return

    def send(self, body: str, *, message_id: str | None = None) -> str:
        """Enqueue ``body`` and wake any waiting poll. Returns the logical message id."""
        message_id = message_id or uuid.uuid4().hex
        now = self._clock()
        self._entries[message_id] = _Entry(
            message_id=message_id,
            body=body,
            sent_at=now,
            visible_at=now,
        )
        self._changed.set()
        return message_id

    @property
    def depth(self) -> int:
        """Messages still stored, visible or in flight."""
        return len(self._entries)

    @property
    def in_flight(self) -> int:
        now = self._clock()
        return sum(1 for e in self._entries.values() if e.handle is not None and e.visible_at > now)

    async def poll(self, max_batch: int, wait_time: float) -> list[QueueMessage]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(wait_time, 0.0)
        while True:
            self._changed.clear()
            batch = self._receive(max_batch)
            if batch:
                return batch
            remaining = deadline - loop.time()
            if remaining <= 0:
                return []
            try:
                await asyncio.wait_for(self._changed.wait(), timeout=self._next_wakeup(remaining))
            except asyncio.TimeoutError:
                pass

    async def acknowledge(self, handle: str) -> None:
        message_id = self._handles.get(handle)
        entry = self._entries.get(message_id) if message_id is not None else None
        if entry is None:
            raise AckError(AckErrorKind.NOT_FOUND, f"unknown receipt handle {handle!r}")
        if entry.handle != handle or self._clock() >= entry.visible_at:
            raise AckError(
                AckErrorKind.HANDLE_EXPIRED,
                f"receipt handle for {entry.message_id} expired after visibility timeout",
            )
        self._remove(entry)
        self.acknowledged.append(entry.message_id)

    def _receive(self, max_batch: int) -> list[QueueMessage]:
        now = self._clock()
        batch: list[QueueMessage] = []
        for entry in list(self._entries.values()):
            if self._retention_seconds is not None and now - entry.sent_at >= self._retention_seconds:
                self._remove(entry)
                _log("message_expired", message_id=entry.message_id, receive_count=entry.receive_count)
                continue
            if len(batch) >= max_batch or entry.visible_at > now:
                continue
            handle = uuid.uuid4().hex
            entry.receive_count += 1
            entry.handle = handle
            entry.handles.append(handle)
            entry.visible_at = now + self._visibility_timeout
            self._handles[handle] = entry.message_id
            batch.append(
                QueueMessage(
                    id=handle,
                    body=entry.body,
                    receive_count=entry.receive_count,
                    message_id=entry.message_id,
                    attributes={"ApproximateReceiveCount": str(entry.receive_count)},
                )
            )
        return batch

    def _next_wakeup(self, remaining: float) -> float:
        now = self._clock()
        hidden = [e.visible_at - now for e in self._entries.values() if e.visible_at > now]
        if not hidden:
            return remaining
        return min(remaining, max(min(hidden), _MIN_RECHECK_SECONDS))

    def _remove(self, entry: _Entry) -> None:
        self._entries.pop(entry.message_id, None)
        for handle in entry.handles:
            self._handles.pop(handle, None)
