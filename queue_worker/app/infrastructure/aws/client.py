"""boto3 client construction shared by the SQS queue and the SQS dead-letter sink."""
from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config

from queue_worker.app.config.settings import Settings

# SQS long polls for at most 20s; the read timeout has to outlast that
_READ_TIMEOUT_MARGIN_SECONDS = 10
_SQS_MAX_WAIT_SECONDS = 20


def create_sqs_client(settings: Settings) -> Any:
    return boto3.client(
        "sqs",
        region_name=settings.aws_region,
        endpoint_url=settings.aws_endpoint_url or None,
        config=Config(
            retries={"max_attempts": settings.max_connection_attempts, "mode": "standard"},
            connect_timeout=5,
            read_timeout=_SQS_MAX_WAIT_SECONDS + _READ_TIMEOUT_MARGIN_SECONDS,
        ),
    )
