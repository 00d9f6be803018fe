"""Amazon SQS implementation of MessageQueue.

boto3 is blocking, so every call runs in a worker thread via asyncio.to_thread.
Cancelling a poll abandons the thread's result; anything it received becomes
visible again after the visibility timeout.
"""
from __future__ import annotations

import asyncio
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from queue_worker.app.config.settings import Settings
from queue_worker.app.core import SERVICE_NAME
from queue_worker.app.core.backoff import connect_with_backoff
from queue_worker.app.domain.errors import AckError, AckErrorKind, QueueUnavailableError
from queue_worker.app.domain.models import QueueMessage
from queue_worker.app.infrastructure.aws.client import create_sqs_client

SQS_MAX_BATCH = 10
SQS_MAX_WAIT_SECONDS = 20
SQS_MAX_VISIBILITY_SECONDS = 43_200

_EXPIRED_HANDLE_CODES = {"ReceiptHandleIsInvalid", "InvalidParameterValue"}
_MISSING_QUEUE_CODES = {"AWS.SimpleQueueService.NonExistentQueue", "QueueDoesNotExist"}


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class SqsQueue:
    """MessageQueue implementation"""

    def __init__(self, settings: Settings, *, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client
        self._queue_url: str | None = settings.queue_url or None
        self._visibility_timeout = min(
            max(int(round(settings.visibility_timeout_seconds)), 1), SQS_MAX_VISIBILITY_SECONDS
        )

    @property
    def queue_url(self) -> str | None:
        return self._queue_url

    async def connect(self) -> None:
        if self._client is None:
            self._client = create_sqs_client(self._settings)
        if self._queue_url:
            _log("sqs_queue_configured", queue_url=self._queue_url)
            return

        async def resolve() -> str:
            response = await asyncio.to_thread(
                self._client.get_queue_url, QueueName=self._settings.queue_name
            )
            return str(response["QueueUrl"])

        self._queue_url = await connect_with_backoff(
            "sqs",
            resolve,
            initial_delay=self._settings.initial_backoff_seconds,
            max_delay=self._settings.max_backoff_seconds,
            multiplier=self._settings.backoff_multiplier,
            max_attempts=self._settings.max_connection_attempts,
        )
        _log("sqs_queue_resolved", queue_name=self._settings.queue_name, queue_url=self._queue_url)

    async def poll(self, max_batch: int, wait_time: float) -> list[QueueMessage]:
        if self._client is None or not self._queue_url:
            raise QueueUnavailableError("sqs queue not connected")
        params = {
            "QueueUrl": self._queue_url,
            "MaxNumberOfMessages": max(1, min(int(max_batch), SQS_MAX_BATCH)),
            "WaitTimeSeconds": max(0, min(int(round(wait_time)), SQS_MAX_WAIT_SECONDS)),
            "VisibilityTimeout": self._visibility_timeout,
            "AttributeNames": ["ApproximateReceiveCount", "SentTimestamp"],
            "MessageAttributeNames": ["All"],
        }
        try:
            response = await asyncio.to_thread(self._client.receive_message, **params)
        except ClientError as exc:
            raise QueueUnavailableError(f"sqs receive failed ({_error_code(exc)}): {exc}") from exc
        except BotoCoreError as exc:
            raise QueueUnavailableError(f"sqs receive failed: {exc}") from exc

        messages = response.get("Messages", [])
        if messages:
            _log("sqs_messages_received", count=len(messages))
        return [self._to_queue_message(raw) for raw in messages]

    async def acknowledge(self, handle: str) -> None:
        if self._client is None or not self._queue_url:
            raise AckError(AckErrorKind.UNAVAILABLE, "sqs queue not connected")
        try:
            await asyncio.to_thread(
                self._client.delete_message,
                QueueUrl=self._queue_url,
                ReceiptHandle=handle,
            )
        except ClientError as exc:
            code = _error_code(exc)
            if code in _EXPIRED_HANDLE_CODES:
                raise AckError(AckErrorKind.HANDLE_EXPIRED, f"receipt handle rejected ({code})") from exc
            if code in _MISSING_QUEUE_CODES:
                raise AckError(AckErrorKind.NOT_FOUND, f"queue not found ({code})") from exc
            raise AckError(AckErrorKind.UNAVAILABLE, f"sqs delete failed ({code}): {exc}") from exc
        except BotoCoreError as exc:
            raise AckError(AckErrorKind.UNAVAILABLE, f"sqs delete failed: {exc}") from exc

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None and callable(getattr(client, "close", None)):
            client.close()

    @staticmethod
    def _to_queue_message(raw: dict[str, Any]) -> QueueMessage:
        attributes = dict(raw.get("Attributes", {}))
        return QueueMessage(
            id=raw["ReceiptHandle"],
            body=raw.get("Body", ""),
            receive_count=int(attributes.get("ApproximateReceiveCount", "1")),
            message_id=raw.get("MessageId", ""),
            attributes=attributes,
        )
