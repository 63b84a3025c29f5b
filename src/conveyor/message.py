"""Message types flowing through consumers and publishers."""

from dataclasses import dataclass, field
from enum import Enum


class ProcessResult(Enum):
    """Outcome of handling one received message.

    CONSUMED deletes the message. REJECTED makes it visible again right
    away. PARSE_FAILED and HANDLER_FAILED leave it on the queue until its
    current visibility timeout expires.
    """

    CONSUMED = "consumed"
    REJECTED = "rejected"
    PARSE_FAILED = "parse_failed"
    HANDLER_FAILED = "handler_failed"


Consumed = ProcessResult.CONSUMED
Rejected = ProcessResult.REJECTED


@dataclass(frozen=True)
class RawMessage:
    """A message received from SQS, valid while its receipt handle is."""

    message_id: str
    body: str
    receipt_handle: str
    receive_count: int = 1
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class OutboundMessage:
    """A message handed to BatchPublisher."""

    payload: bytes | str
    attributes: dict[str, str] = field(default_factory=dict)
    group_id: str | None = None
    """MessageGroupId for FIFO queues and topics."""

    deduplication_id: str | None = None
    """MessageDeduplicationId for FIFO queues and topics."""

    delay_s: int | None = None
    """DelaySeconds (SQS only)."""
