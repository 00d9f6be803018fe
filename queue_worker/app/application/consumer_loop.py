from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Protocol

from loguru import logger

from queue_worker.app.constants import DeadLetterReason, MessageState, ProcessingStage
from queue_worker.app.core import SERVICE_NAME
from queue_worker.app.domain.errors import AckError, DecodeError, HandleError
from queue_worker.app.domain.models import (
    BatchReport,
    DeadLetter,
    DecodedOrder,
    MessageOutcome,
    QueueMessage,
)
from queue_worker.app.domain.order_decoder import OrderDecoder
from queue_worker.app.ports.dead_letter_sink import DeadLetterSink
from queue_worker.app.ports.message_queue import MessageQueue


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class Handler(Protocol):
    async def handle(self, order: DecodedOrder) -> None: ...


class ConsumerLoop:
    """
    Drains a queue batch by batch with at-least-once semantics.

    Per message: decode, handle, acknowledge. Decode failures and permanent
    handle failures are dead-lettered (or dropped when no sink is configured)
    and acknowledged. Transient failures are left unacknowledged so the queue
    redelivers them after the visibility timeout, until the delivery that reaches
    max_receive_count, which is dead-lettered instead.

    Messages of a batch run concurrently up to max_concurrency and each one is
    acknowledged as soon as it finishes. The shutdown event is honoured between
    batches only; a batch that was received is always processed to the end.
    """

    def __init__(
        self,
        queue: MessageQueue,
        decoder: OrderDecoder,
        handler: Handler,
        *,
        max_batch: int,
        wait_time: float,
        max_receive_count: int,
        dead_letter_sink: DeadLetterSink | None = None,
        max_concurrency: int = 1,
        poll_error_backoff_seconds: float = 1.0,
    ) -> None:
        if max_batch <= 0:
            raise ValueError("max_batch must be > 0")
        if wait_time < 0:
            raise ValueError("wait_time must be >= 0")
        if max_receive_count <= 0:
            raise ValueError("max_receive_count must be > 0")
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._queue = queue
        self._decoder = decoder
        self._handler = handler
        self._max_batch = max_batch
        self._wait_time = wait_time
        self._max_receive_count = max_receive_count
        self._dead_letter_sink = dead_letter_sink
        self._max_concurrency = max_concurrency
        self._poll_error_backoff_seconds = poll_error_backoff_seconds

    async def run(self, shutdown: asyncio.Event) -> None:
        _log(
            "consumer_loop_started",
            max_batch=self._max_batch,
            wait_time=self._wait_time,
            max_receive_count=self._max_receive_count,
            max_concurrency=self._max_concurrency,
        )
        while not shutdown.is_set():
            try:
                batch = await self._poll_or_shutdown(shutdown)
            except Exception as exc:
                logger.exception("queue poll failed: {}", exc)
                await self._sleep_or_shutdown(shutdown, self._poll_error_backoff_seconds)
                continue
            if batch is None:
                break
            if batch:
                await self.process_batch(batch)
        _log("consumer_loop_stopped")

    async def run_once(self) -> BatchReport:
        """Poll once and process whatever arrived."""
        batch = await self._queue.poll(self._max_batch, self._wait_time)
        return await self.process_batch(batch)

    async def process_batch(self, batch: list[QueueMessage]) -> BatchReport:
        if not batch:
            return BatchReport()
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(message: QueueMessage) -> MessageOutcome:
            async with semaphore:
                try:
                    return await self.process_message(message)
                except Exception as exc:
                    logger.exception("unexpected failure processing {}: {}", message.message_id, exc)
                    return self._outcome(
                        message,
                        ProcessingStage.RECEIVED,
                        MessageState.PENDING_REDELIVERY,
                        error=str(exc),
                    )

        outcomes = await asyncio.gather(*(bounded(message) for message in batch))
        report = BatchReport(outcomes=tuple(outcomes))
        _log(
            "batch_processed",
            size=report.size,
            acknowledged=report.acknowledged,
            dead_lettered=report.dead_lettered,
            dropped=report.dropped,
            pending_redelivery=report.pending_redelivery,
        )
        return report

    async def process_message(self, message: QueueMessage) -> MessageOutcome:
        _log(
            "message_received",
            message_id=message.message_id,
            receive_count=message.receive_count,
        )

        if message.receive_count > self._max_receive_count:
            return await self._dead_letter(
                message,
                ProcessingStage.RECEIVED,
                DeadLetterReason.MAX_RECEIVE_COUNT_EXCEEDED,
                f"receive count {message.receive_count} exceeds {self._max_receive_count}",
            )

        try:
            order = self._decoder.decode(message.body)
        except DecodeError as exc:
            _log(
                "message_decode_failed",
                message_id=message.message_id,
                kind=exc.kind.value,
                error=str(exc),
            )
            return await self._dead_letter(
                message, ProcessingStage.DECODE_FAILED, DeadLetterReason.DECODE_ERROR, str(exc)
            )

        try:
            await self._handler.handle(order)
        except HandleError as exc:
            if exc.is_transient:
                return await self._transient_failure(message, str(exc))
            return await self._dead_letter(
                message,
                ProcessingStage.HANDLE_FAILED_PERMANENT,
                DeadLetterReason.HANDLE_PERMANENT,
                str(exc),
            )
        except Exception as exc:
            logger.exception("handler raised unexpected error for {}: {}", message.message_id, exc)
            return await self._transient_failure(message, str(exc))

        acked = await self._acknowledge(message)
        return self._outcome(
            message,
            ProcessingStage.HANDLED,
            MessageState.ACKNOWLEDGED if acked else MessageState.PENDING_REDELIVERY,
            acked=acked,
        )

    async def _transient_failure(self, message: QueueMessage, error: str) -> MessageOutcome:
        if message.receive_count >= self._max_receive_count:
            _log(
                "message_poison_detected",
                message_id=message.message_id,
                receive_count=message.receive_count,
                error=error,
            )
            return await self._dead_letter(
                message,
                ProcessingStage.HANDLE_FAILED_TRANSIENT,
                DeadLetterReason.MAX_RECEIVE_COUNT_EXCEEDED,
                error,
            )
        _log(
            "message_transient_failure",
            message_id=message.message_id,
            receive_count=message.receive_count,
            error=error,
        )
        return self._outcome(
            message,
            ProcessingStage.HANDLE_FAILED_TRANSIENT,
            MessageState.PENDING_REDELIVERY,
            error=error,
        )

    async def _dead_letter(
        self,
        message: QueueMessage,
        stage: ProcessingStage,
        reason: DeadLetterReason,
        error: str,
    ) -> MessageOutcome:
        if self._dead_letter_sink is None:
            logger.bind(
                service_name=SERVICE_NAME,
                event="message_dropped",
                message_id=message.message_id,
                reason=reason.value,
                error=error,
            ).error("")
            acked = await self._acknowledge(message)
            return self._outcome(message, stage, MessageState.DROPPED, acked=acked, error=error)

        letter = DeadLetter(
            message_id=message.message_id,
            body=message.body,
            receive_count=message.receive_count,
            reason=reason,
            error=error,
            failed_at=datetime.now(timezone.utc),
        )
        try:
            await self._dead_letter_sink.write(letter)
        except Exception as exc:
            # not acknowledged: the next delivery retries the dead-letter write
            logger.warning("dead-letter write failed for {}: {}", message.message_id, exc)
            return self._outcome(
                message,
                stage,
                MessageState.PENDING_REDELIVERY,
                error=f"{error}; dead-letter write failed: {exc}",
            )

        _log(
            "message_dead_lettered",
            message_id=message.message_id,
            reason=reason.value,
            receive_count=message.receive_count,
        )
        acked = await self._acknowledge(message)
        return self._outcome(message, stage, MessageState.DEAD_LETTERED, acked=acked, error=error)

    async def _acknowledge(self, message: QueueMessage) -> bool:
        try:
            await self._queue.acknowledge(message.id)
        except AckError as exc:
            logger.bind(
                service_name=SERVICE_NAME,
                event="message_ack_failed",
                message_id=message.message_id,
                kind=exc.kind.value,
                error=str(exc),
            ).warning("")
            return False
        return True

    def _outcome(
        self,
        message: QueueMessage,
        stage: ProcessingStage,
        state: MessageState,
        *,
        acked: bool = False,
        error: str | None = None,
    ) -> MessageOutcome:
        return MessageOutcome(
            message_id=message.message_id,
            handle=message.id,
            receive_count=message.receive_count,
            stage=stage,
            state=state,
            acked=acked,
            error=error,
        )

    async def _poll_or_shutdown(self, shutdown: asyncio.Event) -> list[QueueMessage] | None:
        """Poll, but give up as soon as shutdown is requested. Returns None on shutdown."""
        poll_task = asyncio.create_task(self._queue.poll(self._max_batch, self._wait_time))
        shutdown_task = asyncio.create_task(shutdown.wait())
        try:
            await asyncio.wait({poll_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            poll_task.cancel()
            raise
        finally:
            shutdown_task.cancel()
            with suppress(asyncio.CancelledError):
                await shutdown_task
        if poll_task.done():
            # a batch that already arrived is processed even if shutdown raced it
            return poll_task.result()
        poll_task.cancel()
        with suppress(asyncio.CancelledError):
            await poll_task
        return None

    async def _sleep_or_shutdown(self, shutdown: asyncio.Event, seconds: float) -> None:
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(shutdown.wait(), timeout=seconds)
