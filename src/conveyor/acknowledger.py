"""Turns handler verdicts into SQS side effects."""

import logging
from typing import Any

from conveyor.message import ProcessResult, RawMessage

logger = logging.getLogger(__name__)


class Acknowledger:
    """Deletes, rejects or leaves a received message.

    Failed acknowledgment calls are logged and swallowed: the message is
    redelivered once its visibility timeout expires, which at-least-once
    consumers must tolerate anyway.
    """

    def __init__(
        self,
        sqs: Any,
        queue_url: str,
        *,
        reject_visibility_timeout_s: int = 0,
    ) -> None:
        """Initialize the acknowledger.

        Args:
            sqs: aioboto3 SQS client.
            queue_url: Queue the messages were received from.
            reject_visibility_timeout_s: Visibility timeout applied to
                rejected messages. 0 makes them receivable immediately.
        """
        self._sqs = sqs
        self._queue_url = queue_url
        self._reject_visibility_timeout_s = reject_visibility_timeout_s

    @property
    def queue_url(self) -> str:
        return self._queue_url

    async def acknowledge(self, message: RawMessage, result: ProcessResult) -> None:
        """Apply result to message."""
        if result is ProcessResult.CONSUMED:
            await self._delete(message)
        elif result is ProcessResult.REJECTED:
            await self._reject(message)
        else:
            logger.debug(
                "Leaving message %s on queue (%s, receive count %d)",
                message.message_id,
                result.value,
                message.receive_count,
            )

    async def _delete(self, message: RawMessage) -> None:
        try:
            await self._sqs.delete_message(
                QueueUrl=self._queue_url,
                ReceiptHandle=message.receipt_handle,
            )
        except Exception:
            logger.warning(
                "Failed to delete message %s; it will be redelivered",
                message.message_id,
                exc_info=True,
            )
        else:
            logger.debug("Deleted message %s", message.message_id)

    async def _reject(self, message: RawMessage) -> None:
        try:
            await self._sqs.change_message_visibility(
                QueueUrl=self._queue_url,
                ReceiptHandle=message.receipt_handle,
                VisibilityTimeout=self._reject_visibility_timeout_s,
            )
        except Exception:
            logger.warning(
                "Failed to reject message %s; it will be redelivered "
                "after its visibility timeout",
                message.message_id,
                exc_info=True,
            )
        else:
            logger.debug("Rejected message %s", message.message_id)
