"""Batch destinations for BatchPublisher."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from conveyor.config import MAX_BATCH_ENTRIES
from conveyor.marshaling import to_sns_entry, to_sqs_entry
from conveyor.message import OutboundMessage


@dataclass(frozen=True)
class EntryFailure:
    """Why one entry of a batch request was not accepted."""

    code: str
    reason: str
    sender_fault: bool = False


@dataclass
class BatchResult:
    """Per-entry outcome of one batch request, keyed by entry id."""

    successful: dict[str, str] = field(default_factory=dict)
    """Entry id -> provider-assigned message id."""

    failed: dict[str, EntryFailure] = field(default_factory=dict)


@runtime_checkable
class BatchTarget(Protocol):
    """Destination accepting batches of messages."""

    @property
    def max_batch_size(self) -> int: ...

    @property
    def destination(self) -> str:
        """Queue URL or topic ARN, used in logs and metrics."""
        ...

    async def send_batch(
        self, entries: Sequence[tuple[str, OutboundMessage]]
    ) -> BatchResult:
        """Submit (entry id, message) pairs in a single request."""
        ...


def _parse_batch_response(response: dict[str, Any]) -> BatchResult:
    result = BatchResult()
    for success in response.get("Successful", []):
        result.successful[success["Id"]] = success.get("MessageId", "")
    for failure in response.get("Failed", []):
        result.failed[failure["Id"]] = EntryFailure(
            code=failure.get("Code", ""),
            reason=failure.get("Message", ""),
            sender_fault=bool(failure.get("SenderFault", False)),
        )
    return result


class SQSBatchTarget:
    """Sends batches to an SQS queue with SendMessageBatch."""

    max_batch_size = MAX_BATCH_ENTRIES

    def __init__(self, sqs: Any, queue_url: str) -> None:
        self._sqs = sqs
        self._queue_url = queue_url

    @property
    def destination(self) -> str:
        return self._queue_url

    async def send_batch(
        self, entries: Sequence[tuple[str, OutboundMessage]]
    ) -> BatchResult:
        response = await self._sqs.send_message_batch(
            QueueUrl=self._queue_url,
            Entries=[to_sqs_entry(entry_id, msg) for entry_id, msg in entries],
        )
        return _parse_batch_response(response)


class SNSBatchTarget:
    """Publishes batches to an SNS topic with PublishBatch."""

    max_batch_size = MAX_BATCH_ENTRIES

    def __init__(self, sns: Any, topic_arn: str) -> None:
        self._sns = sns
        self._topic_arn = topic_arn

    @property
    def destination(self) -> str:
        return self._topic_arn

    async def send_batch(
        self, entries: Sequence[tuple[str, OutboundMessage]]
    ) -> BatchResult:
        response = await self._sns.publish_batch(
            TopicArn=self._topic_arn,
            PublishBatchRequestEntries=[
                to_sns_entry(entry_id, msg) for entry_id, msg in entries
            ],
        )
        return _parse_batch_response(response)
