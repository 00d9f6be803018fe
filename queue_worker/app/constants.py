"""Worker-level constants shared across modules."""
from __future__ import annotations

from enum import Enum


class ProcessingStage(str, Enum):
    """Furthest point a delivery reached before its final state was decided."""

    RECEIVED = "RECEIVED"
    DECODE_FAILED = "DECODE_FAILED"
    HANDLED = "HANDLED"
    HANDLE_FAILED_TRANSIENT = "HANDLE_FAILED_TRANSIENT"
    HANDLE_FAILED_PERMANENT = "HANDLE_FAILED_PERMANENT"


class MessageState(str, Enum):
    ACKNOWLEDGED = "ACKNOWLEDGED"
    DEAD_LETTERED = "DEAD_LETTERED"
    # acknowledged without a dead-letter sink to keep the body
    DROPPED = "DROPPED"
    PENDING_REDELIVERY = "PENDING_REDELIVERY"


class DeadLetterReason(str, Enum):
    DECODE_ERROR = "decode_error"
    HANDLE_PERMANENT = "handle_permanent"
    MAX_RECEIVE_COUNT_EXCEEDED = "max_receive_count_exceeded"


class QUEUE_BACKEND:
    INMEMORY = "inmemory"
    SQS = "sqs"
    RABBITMQ = "rabbitmq"


class DEAD_LETTER_BACKEND:
    NONE = "none"
    LOG = "log"
    INMEMORY = "inmemory"
    SQS = "sqs"
    MONGO = "mongo"


class REPOSITORY_BACKEND:
    INMEMORY = "inmemory"
    MONGO = "mongo"
