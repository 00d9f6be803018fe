"""RabbitMQ queue adapter lifecycle states."""
from enum import Enum


class QueueState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    READY = "READY"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


# quorum queues count redeliveries in this header (absent on first delivery)
DELIVERY_COUNT_HEADER = "x-delivery-count"
