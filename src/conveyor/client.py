"""Conveyor: owns the AWS clients and builds consumers and publishers."""

import logging
from contextlib import AsyncExitStack
from typing import Any, TypeVar

import aioboto3

from conveyor.config import ConsumerSettings, PublisherSettings
from conveyor.consumer import Handler, SQSConsumer
from conveyor.metrics import ConveyorMetrics
from conveyor.provisioning import QueueProvisioner
from conveyor.publisher import BatchPublisher
from conveyor.readers import MessageReader
from conveyor.targets import SNSBatchTarget, SQSBatchTarget

logger = logging.getLogger(__name__)

T = TypeVar("T")

SNS_ARN_PREFIX = "arn:"


class Conveyor:
    """Entry point wiring aioboto3 clients into consumers and publishers.

    Example:
        session = aioboto3.Session(region_name="eu-central-1")
        async with Conveyor(session) as conveyor:
            settings = ConsumerSettings(
                queue_name="orders",
                topics=[orders_topic_arn],
                parallelism=8,
            )
            await conveyor.consume(settings, handle_order, PydanticReader(Order))
    """

    def __init__(
        self,
        session: aioboto3.Session | None = None,
        *,
        endpoint_url: str | None = None,
        metrics: ConveyorMetrics | None = None,
        **client_kwargs: Any,
    ) -> None:
        """Initialize Conveyor.

        Args:
            session: aioboto3 session. A default session is created if None.
            endpoint_url: Custom endpoint (e.g. LocalStack).
            metrics: Metrics recorder shared by consumers and publishers.
            **client_kwargs: Passed to session.client() (region_name,
                config, ...).
        """
        self._session = session or aioboto3.Session()
        self._client_kwargs = dict(client_kwargs)
        if endpoint_url is not None:
            self._client_kwargs["endpoint_url"] = endpoint_url
        self._metrics = metrics or ConveyorMetrics()
        self._exit_stack: AsyncExitStack | None = None
        self._sqs: Any = None
        self._sns: Any = None

    @property
    def sqs(self) -> Any:
        if self._sqs is None:
            msg = "Conveyor is not open; use 'async with Conveyor(...)'"
            raise RuntimeError(msg)
        return self._sqs

    @property
    def sns(self) -> Any:
        if self._sns is None:
            msg = "Conveyor is not open; use 'async with Conveyor(...)'"
            raise RuntimeError(msg)
        return self._sns

    @property
    def provisioner(self) -> QueueProvisioner:
        return QueueProvisioner(self.sqs, self.sns)

    def consumer(
        self,
        settings: ConsumerSettings,
        handler: Handler[T],
        reader: MessageReader[T] | None = None,
    ) -> SQSConsumer[T]:
        """Build a consumer that provisions its queue when run."""
        return SQSConsumer(
            self.sqs,
            settings,
            handler,
            reader=reader,
            provisioner=self.provisioner,
            metrics=self._metrics,
        )

    async def consume(
        self,
        settings: ConsumerSettings,
        handler: Handler[T],
        reader: MessageReader[T] | None = None,
    ) -> None:
        """Build a consumer and run it to completion."""
        await self.consumer(settings, handler, reader).run()

    async def queue_publisher(
        self,
        queue_name: str,
        settings: PublisherSettings | None = None,
        *,
        kms_key_alias: str | None = None,
    ) -> BatchPublisher:
        """Build a publisher sending to the named queue, creating it if needed."""
        queue = await self.provisioner.ensure_queue(
            queue_name, kms_key_alias=kms_key_alias
        )
        return BatchPublisher(
            SQSBatchTarget(self.sqs, queue.url), settings, metrics=self._metrics
        )

    async def topic_publisher(
        self,
        topic: str,
        settings: PublisherSettings | None = None,
    ) -> BatchPublisher:
        """Build a publisher sending to a topic given by ARN or name.

        A topic name is created if it doesn't exist.
        """
        if topic.startswith(SNS_ARN_PREFIX):
            topic_arn = topic
        else:
            topic_arn = await self.provisioner.ensure_topic(topic)
        return BatchPublisher(
            SNSBatchTarget(self.sns, topic_arn), settings, metrics=self._metrics
        )

    async def close(self) -> None:
        """Close the AWS clients."""
        if self._exit_stack is not None:
            stack, self._exit_stack = self._exit_stack, None
            self._sqs = None
            self._sns = None
            await stack.aclose()

    async def __aenter__(self) -> "Conveyor":
        stack = AsyncExitStack()
        try:
            self._sqs = await stack.enter_async_context(
                self._session.client("sqs", **self._client_kwargs)
            )
            self._sns = await stack.enter_async_context(
                self._session.client("sns", **self._client_kwargs)
            )
        except BaseException:
            self._sqs = None
            self._sns = None
            await stack.aclose()
            raise
        self._exit_stack = stack
        logger.debug("Opened SQS and SNS clients")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()
