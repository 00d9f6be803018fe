"""Error taxonomy of the consumer loop.

Adapters translate transport and library failures into these types at their
boundary, so the loop only ever reasons about the kinds below.
"""
from __future__ import annotations

from enum import Enum


class DecodeErrorKind(str, Enum):
    MALFORMED_STRUCTURE = "malformed-structure"
    MISSING_FIELD = "missing-field"
    TYPE_MISMATCH = "type-mismatch"


class HandleErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class AckErrorKind(str, Enum):
    HANDLE_EXPIRED = "handle-expired"
    NOT_FOUND = "not-found"
    UNAVAILABLE = "unavailable"


class ConsumerError(Exception):
    """Base for every error the consumer loop handles."""


class DecodeError(ConsumerError):
    """Message body is not a valid order. Never retryable."""

    def __init__(self, kind: DecodeErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class HandleError(ConsumerError):
    """Business action failed; ``kind`` decides between redelivery and dead-lettering."""

    def __init__(self, kind: HandleErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @classmethod
    def transient(cls, message: str) -> "HandleError":
        return cls(HandleErrorKind.TRANSIENT, message)

    @classmethod
    def permanent(cls, message: str) -> "HandleError":
        return cls(HandleErrorKind.PERMANENT, message)

    @property
    def is_transient(self) -> bool:
        return self.kind is HandleErrorKind.TRANSIENT


class AckError(ConsumerError):
    """Acknowledgment was refused; the message will simply be redelivered."""

    def __init__(self, kind: AckErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class QueueUnavailableError(ConsumerError):
    """Polling the queue failed (network, broker down, missing queue)."""


class DeadLetterError(ConsumerError):
    """Writing to the dead-letter sink failed."""
