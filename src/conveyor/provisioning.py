"""Queue and topic setup: creation, ARNs, policies, subscriptions.

Every call here is made once at startup and is not retried. Errors are
raised as ProvisioningError because nothing can be consumed or published
without a valid queue.
"""

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from conveyor.config import ConsumerSettings
from conveyor.errors import ProvisioningError, error_code

logger = logging.getLogger(__name__)

QUEUE_ARN_ATTR = "QueueArn"
POLICY_ATTR = "Policy"
REDRIVE_POLICY_ATTR = "RedrivePolicy"
KMS_KEY_ATTR = "KmsMasterKeyId"

QUEUE_NOT_FOUND_CODES = frozenset(
    {"AWS.SimpleQueueService.NonExistentQueue", "QueueDoesNotExist"}
)


@dataclass(frozen=True)
class QueueInfo:
    """Resolved queue identity."""

    name: str
    url: str
    arn: str


def topic_policy(queue_arn: str, topic_arns: Sequence[str]) -> dict[str, Any]:
    """Build a queue policy allowing the given topics to send to the queue."""
    return {
        "Version": "2012-10-17",
        "Id": f"{queue_arn}/topic-subscriptions",
        "Statement": [
            {
                "Sid": f"topic-subscription-{index}",
                "Effect": "Allow",
                "Principal": {"Service": "sns.amazonaws.com"},
                "Action": "sqs:SendMessage",
                "Resource": queue_arn,
                "Condition": {"ArnEquals": {"aws:SourceArn": topic_arn}},
            }
            for index, topic_arn in enumerate(topic_arns)
        ],
    }


class QueueProvisioner:
    """Idempotent setup calls against SQS and SNS."""

    def __init__(self, sqs: Any, sns: Any = None) -> None:
        """Initialize the provisioner.

        Args:
            sqs: aioboto3 SQS client.
            sns: aioboto3 SNS client. Only needed for topic operations.
        """
        self._sqs = sqs
        self._sns = sns

    def _require_sns(self) -> Any:
        if self._sns is None:
            msg = "An SNS client is required for topic operations"
            raise ProvisioningError(msg)
        return self._sns

    async def ensure_queue(
        self,
        name: str,
        *,
        kms_key_alias: str | None = None,
        attributes: dict[str, str] | None = None,
    ) -> QueueInfo:
        """Create the queue if it doesn't exist and return its URL and ARN.

        CreateQueue returns the existing queue when called again with the
        same attributes.
        """
        queue_attributes = dict(attributes or {})
        if kms_key_alias:
            queue_attributes[KMS_KEY_ATTR] = kms_key_alias

        logger.info("Creating queue. queue_name=%s", name)
        request: dict[str, Any] = {"QueueName": name}
        if queue_attributes:
            request["Attributes"] = queue_attributes
        try:
            response = await self._sqs.create_queue(**request)
        except (ClientError, BotoCoreError) as e:
            msg = f"Failed to create queue {name!r}: {e}"
            raise ProvisioningError(msg) from e

        url = str(response["QueueUrl"])
        logger.debug("Created queue. queue_name=%s, url=%s", name, url)
        arn = await self.get_queue_arn(url)
        logger.debug("Requested queue ARN. queue_name=%s, queue_arn=%s", name, arn)
        return QueueInfo(name=name, url=url, arn=arn)

    async def get_queue_url(self, name: str) -> str:
        """Resolve an existing queue's URL."""
        try:
            response = await self._sqs.get_queue_url(QueueName=name)
        except (ClientError, BotoCoreError) as e:
            if error_code(e) in QUEUE_NOT_FOUND_CODES:
                msg = f"Queue {name!r} does not exist"
            else:
                msg = f"Failed to resolve queue {name!r}: {e}"
            raise ProvisioningError(msg) from e
        return str(response["QueueUrl"])

    async def get_queue_arn(self, queue_url: str) -> str:
        """Look up the queue's ARN."""
        try:
            response = await self._sqs.get_queue_attributes(
                QueueUrl=queue_url,
                AttributeNames=[QUEUE_ARN_ATTR],
            )
        except (ClientError, BotoCoreError) as e:
            msg = f"Failed to read ARN of {queue_url}: {e}"
            raise ProvisioningError(msg) from e
        try:
            return str(response["Attributes"][QUEUE_ARN_ATTR])
        except KeyError as e:
            msg = f"No {QUEUE_ARN_ATTR} returned for {queue_url}"
            raise ProvisioningError(msg) from e

    async def lookup_queue(self, name: str) -> QueueInfo:
        """Resolve an existing queue without creating it."""
        url = await self.get_queue_url(name)
        return QueueInfo(name=name, url=url, arn=await self.get_queue_arn(url))

    async def _set_queue_attributes(
        self, queue: QueueInfo, attributes: dict[str, str]
    ) -> None:
        try:
            await self._sqs.set_queue_attributes(
                QueueUrl=queue.url,
                Attributes=attributes,
            )
        except (ClientError, BotoCoreError) as e:
            msg = f"Failed to update attributes of queue {queue.name!r}: {e}"
            raise ProvisioningError(msg) from e

    async def attach_topic_policy(
        self, queue: QueueInfo, topic_arns: Sequence[str]
    ) -> None:
        """Allow the topics to deliver into the queue.

        Replaces any existing queue policy.
        """
        if not topic_arns:
            return
        policy = topic_policy(queue.arn, topic_arns)
        await self._set_queue_attributes(queue, {POLICY_ATTR: json.dumps(policy)})
        logger.info(
            "Saved queue policy. queue_name=%s, topics=%s",
            queue.name,
            ",".join(topic_arns),
        )

    async def configure_dead_letter(
        self,
        queue: QueueInfo,
        dead_letter_queue: QueueInfo,
        max_receive_count: int,
    ) -> None:
        """Move messages received more than max_receive_count times."""
        redrive = {
            "deadLetterTargetArn": dead_letter_queue.arn,
            "maxReceiveCount": str(max_receive_count),
        }
        await self._set_queue_attributes(
            queue, {REDRIVE_POLICY_ATTR: json.dumps(redrive)}
        )
        logger.info(
            "Configured dead-letter queue. queue_name=%s, dlq=%s, max_receives=%d",
            queue.name,
            dead_letter_queue.name,
            max_receive_count,
        )

    async def ensure_topic(self, name: str) -> str:
        """Create the topic if it doesn't exist and return its ARN."""
        sns = self._require_sns()
        try:
            response = await sns.create_topic(Name=name)
        except (ClientError, BotoCoreError) as e:
            msg = f"Failed to create topic {name!r}: {e}"
            raise ProvisioningError(msg) from e
        return str(response["TopicArn"])

    async def subscribe(
        self,
        topic_arn: str,
        queue_arn: str,
        *,
        raw_message_delivery: bool = False,
    ) -> str:
        """Subscribe the queue to the topic and return the subscription ARN.

        Without raw message delivery SNS wraps each message in its JSON
        envelope, which consumers unwrap transparently.
        """
        sns = self._require_sns()
        request: dict[str, Any] = {
            "TopicArn": topic_arn,
            "Protocol": "sqs",
            "Endpoint": queue_arn,
            "ReturnSubscriptionArn": True,
        }
        if raw_message_delivery:
            request["Attributes"] = {"RawMessageDelivery": "true"}
        try:
            response = await sns.subscribe(**request)
        except (ClientError, BotoCoreError) as e:
            msg = f"Failed to subscribe {queue_arn} to {topic_arn}: {e}"
            raise ProvisioningError(msg) from e
        subscription_arn = str(response.get("SubscriptionArn", ""))
        logger.info(
            "Subscribed queue to topic. topic_arn=%s, queue_arn=%s",
            topic_arn,
            queue_arn,
        )
        return subscription_arn

    async def prepare_consumer(self, settings: ConsumerSettings) -> QueueInfo:
        """Run the full startup sequence for a consumer.

        Consumer queue, dead-letter queue with its redrive policy, topic
        policy, then subscriptions.
        """
        if settings.topics:
            self._require_sns()
        if settings.create_queue_if_missing:
            queue = await self.ensure_queue(
                settings.queue_name, kms_key_alias=settings.kms_key_alias
            )
        else:
            queue = await self.lookup_queue(settings.queue_name)

        if settings.dead_letter is not None:
            dead_letter = settings.dead_letter
            if settings.create_queue_if_missing:
                dlq = await self.ensure_queue(
                    dead_letter.queue_name, kms_key_alias=settings.kms_key_alias
                )
            else:
                dlq = await self.lookup_queue(dead_letter.queue_name)
            await self.configure_dead_letter(
                queue, dlq, dead_letter.max_receive_count
            )

        if settings.topics:
            await self.attach_topic_policy(queue, settings.topics)
            for topic_arn in settings.topics:
                await self.subscribe(topic_arn, queue.arn)
        return queue
