"""Domain models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from queue_worker.app.constants import DeadLetterReason, MessageState, ProcessingStage


@dataclass(frozen=True)
class QueueMessage:
    """One delivery of a logical message.

    ``id`` is the delivery handle used to acknowledge; a redelivery of the same
    logical message (``message_id``) carries a new handle and a higher
    ``receive_count``.
    """

    id: str
    body: str
    receive_count: int = 1
    message_id: str = ""
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DecodedOrder:
    order_id: str
    customer_id: str
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe payload; the amount travels as a string to keep it exact."""
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class DeadLetter:
    """Record written to the dead-letter sink for a message that will never succeed."""

    message_id: str
    body: str
    receive_count: int
    reason: DeadLetterReason
    error: str
    failed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "body": self.body,
            "receive_count": int(self.receive_count),
            "reason": self.reason.value,
            "error": self.error,
            "failed_at": self.failed_at.isoformat(),
        }


@dataclass(frozen=True)
class MessageOutcome:
    message_id: str
    handle: str
    receive_count: int
    stage: ProcessingStage
    state: MessageState
    acked: bool = False
    error: str | None = None


@dataclass(frozen=True)
class BatchReport:
    outcomes: tuple[MessageOutcome, ...] = ()

    def count(self, state: MessageState) -> int:
        return sum(1 for outcome in self.outcomes if outcome.state is state)

    @property
    def size(self) -> int:
        return len(self.outcomes)

    @property
    def acknowledged(self) -> int:
        return self.count(MessageState.ACKNOWLEDGED)

    @property
    def dead_lettered(self) -> int:
        return self.count(MessageState.DEAD_LETTERED)

    @property
    def dropped(self) -> int:
        return self.count(MessageState.DROPPED)

    @property
    def pending_redelivery(self) -> int:
        return self.count(MessageState.PENDING_REDELIVERY)
