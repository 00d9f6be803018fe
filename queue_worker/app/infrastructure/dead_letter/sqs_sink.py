"""Dead-letter sink that forwards records to a secondary SQS queue."""
from __future__ import annotations

import asyncio
import json
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from queue_worker.app.config.settings import Settings
from queue_worker.app.domain.errors import DeadLetterError
from queue_worker.app.domain.models import DeadLetter
from queue_worker.app.infrastructure.aws.client import create_sqs_client


class SqsDeadLetterSink:
    def __init__(self, settings: Settings, *, client: Any | None = None) -> None:
        self._settings = settings
        self._queue_url = settings.dead_letter_queue_url
        self._client = client

    async def connect(self) -> None:
        if self._client is None:
            self._client = create_sqs_client(self._settings)

    async def write(self, letter: DeadLetter) -> None:
        if self._client is None:
            raise DeadLetterError("sqs dead-letter sink not connected")
        params: dict[str, Any] = {
            "QueueUrl": self._queue_url,
            "MessageBody": json.dumps(letter.to_dict()),
            "MessageAttributes": {
                "reason": {"DataType": "String", "StringValue": letter.reason.value},
            },
        }
        if self._queue_url.endswith(".fifo"):
            params["MessageGroupId"] = "dead-letters"
            params["MessageDeduplicationId"] = letter.message_id or letter.failed_at.isoformat()
        try:
            await asyncio.to_thread(self._client.send_message, **params)
        except (ClientError, BotoCoreError) as exc:
            raise DeadLetterError(f"sqs dead-letter send failed: {exc}") from exc

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None and callable(getattr(client, "close", None)):
            client.close()
