"""SQS consumer loop with bounded concurrency."""

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Generic, TypeVar

import anyio
from anyio import to_thread
from anyio.abc import ObjectReceiveStream, ObjectSendStream

from conveyor.acknowledger import Acknowledger
from conveyor.backoff import Backoff
from conveyor.config import ConsumerSettings
from conveyor.errors import ConsumerError, is_transient_error
from conveyor.marshaling import RECEIVE_COUNT_ATTR, decode_envelope, from_sqs_message
from conveyor.message import ProcessResult, RawMessage
from conveyor.metrics import ConveyorMetrics
from conveyor.provisioning import QueueProvisioner
from conveyor.readers import MessageReader, StringReader

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], Awaitable[ProcessResult | None] | ProcessResult | None]


class ConsumerState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    STOPPED = "stopped"


def _is_async_callable(obj: Any) -> bool:
    return inspect.iscoroutinefunction(obj) or inspect.iscoroutinefunction(
        getattr(obj, "__call__", None)  # noqa: B004
    )


class SQSConsumer(Generic[T]):
    """Long-polls a queue and hands each message to a handler.

    Each received message goes through envelope unwrap, the reader, the
    handler and the acknowledger, in that order. At most `parallelism`
    messages are in that pipeline at once; the poller waits for a free
    worker before handing over the next message.

    Handlers return Consumed (or None) to delete the message and Rejected
    to make it visible again immediately. Reader and handler exceptions
    leave the message on the queue until its visibility timeout expires.

    Example:
        async def handle(order: Order) -> ProcessResult:
            await store(order)
            return Consumed

        consumer = SQSConsumer(
            sqs,
            ConsumerSettings(queue_name="orders", parallelism=4),
            handle,
            reader=PydanticReader(Order),
        )
        await consumer.run()
    """

    def __init__(
        self,
        sqs: Any,
        settings: ConsumerSettings,
        handler: Handler[T],
        *,
        reader: MessageReader[T] | None = None,
        provisioner: QueueProvisioner | None = None,
        queue_url: str | None = None,
        metrics: ConveyorMetrics | None = None,
    ) -> None:
        """Initialize the consumer.

        Args:
            sqs: aioboto3 SQS client.
            settings: Consumer configuration.
            handler: Sync or async callable receiving the read value. Sync
                handlers run in a worker thread.
            reader: Turns the unwrapped payload into the handler's input.
                Defaults to passing the payload string through.
            provisioner: Used to create/resolve the queue before polling.
            queue_url: Skip provisioning and consume from this URL.
            metrics: Metrics recorder.
        """
        self._sqs = sqs
        self._settings = settings
        self._handler = handler
        self._is_async_handler = _is_async_callable(handler)
        self._reader: MessageReader[Any] = reader or StringReader()
        self._provisioner = provisioner or QueueProvisioner(sqs)
        self._queue_url = queue_url
        self._metrics = metrics or ConveyorMetrics()
        self._backoff = Backoff(settings.backoff)

        self._state = ConsumerState.IDLE
        self._started = False
        self._closed = False
        self._stop_requested = False
        self._in_flight = 0
        self._poll_scope: anyio.CancelScope | None = None
        self._completion: anyio.Event | None = None
        self._failure: BaseException | None = None

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def settings(self) -> ConsumerSettings:
        return self._settings

    @property
    def queue_url(self) -> str | None:
        return self._queue_url

    @property
    def in_flight(self) -> int:
        """Messages received and not yet acknowledged."""
        return self._in_flight

    async def run(self) -> None:
        """Consume until the limitation stops the consumer or close() is called.

        Messages already handed to workers finish before this returns.

        Raises:
            ProvisioningError: The queue could not be created or resolved.
            ConsumerError: Polling hit a non-retryable error.
        """
        if self._closed:
            msg = "Consumer is closed"
            raise RuntimeError(msg)
        if self._started:
            msg = "Consumer is already running"
            raise RuntimeError(msg)
        self._started = True

        try:
            queue_url = await self._resolve_queue_url()
            acknowledger = Acknowledger(
                self._sqs,
                queue_url,
                reject_visibility_timeout_s=self._settings.reject_visibility_timeout_s,
            )
            logger.info(
                "Starting consumer. queue_url=%s, parallelism=%d, limitation=%r",
                queue_url,
                self._settings.parallelism,
                self._settings.limitation,
            )
            self._completion = anyio.Event()
            send_stream, receive_stream = anyio.create_memory_object_stream[
                RawMessage
            ](0)
            async with anyio.create_task_group() as tg:
                for _ in range(self._settings.parallelism):
                    tg.start_soon(self._worker, receive_stream.clone(), acknowledger)
                receive_stream.close()
                async with send_stream:
                    await self._poll(queue_url, send_stream)
        finally:
            self._state = ConsumerState.STOPPED

        if self._failure is not None:
            msg = f"Consumer for {self._queue_url} stopped: {self._failure}"
            raise ConsumerError(msg) from self._failure
        logger.info("Consumer stopped. queue_url=%s", self._queue_url)

    async def _resolve_queue_url(self) -> str:
        if self._queue_url is None:
            queue = await self._provisioner.prepare_consumer(self._settings)
            self._queue_url = queue.url
        return self._queue_url

    def _should_stop(self) -> bool:
        return self._stop_requested or self._settings.limitation.should_stop()

    async def _poll(
        self,
        queue_url: str,
        send_stream: ObjectSendStream[RawMessage],
    ) -> None:
        receive = self._settings.receive
        limitation = self._settings.limitation
        attempt = 0

        while not self._should_stop():
            size = limitation.request_size(receive.max_messages, self._in_flight)
            if size == 0:
                # Every remaining slot belongs to an in-flight message
                await self._wait_for_completion()
                continue

            self._state = ConsumerState.POLLING
            messages: list[RawMessage] | None = None
            with anyio.CancelScope() as scope:
                self._poll_scope = scope
                try:
                    messages = await self._receive(queue_url, size)
                except Exception as e:
                    if not is_transient_error(e):
                        logger.error("Fatal error polling %s: %s", queue_url, e)
                        self._failure = e
                        self._stop_requested = True
                    else:
                        attempt += 1
                        delay = self._backoff.delay(attempt)
                        logger.warning(
                            "Error polling %s (attempt %d), retrying in %.2fs: %s",
                            queue_url,
                            attempt,
                            delay,
                            e,
                        )
                        await anyio.sleep(delay)
            self._poll_scope = None

            if messages is None:
                continue
            attempt = 0
            if not messages:
                continue

            self._state = ConsumerState.DISPATCHING
            self._in_flight += len(messages)
            for message in messages:
                await send_stream.send(message)

    async def _receive(self, queue_url: str, size: int) -> list[RawMessage]:
        receive = self._settings.receive
        request: dict[str, Any] = {
            "QueueUrl": queue_url,
            "MaxNumberOfMessages": size,
            "WaitTimeSeconds": receive.wait_time_s,
            "AttributeNames": [RECEIVE_COUNT_ATTR],
            "MessageAttributeNames": ["All"],
        }
        if receive.visibility_timeout_s is not None:
            request["VisibilityTimeout"] = receive.visibility_timeout_s
        response = await self._sqs.receive_message(**request)
        return [from_sqs_message(m) for m in response.get("Messages", [])]

    async def _worker(
        self,
        receive_stream: ObjectReceiveStream[RawMessage],
        acknowledger: Acknowledger,
    ) -> None:
        async with receive_stream:
            async for message in receive_stream:
                await self._process(message, acknowledger)
                self._in_flight -= 1
                if self._settings.limitation.record_completion():
                    self._request_stop()
                self._notify_completion()

    async def _process(self, message: RawMessage, acknowledger: Acknowledger) -> None:
        start = time.perf_counter()
        result = await self._handle(message)
        await acknowledger.acknowledge(message, result)
        self._metrics.record_processed(
            result,
            time.perf_counter() - start,
            self._settings.queue_name,
        )

    async def _handle(self, message: RawMessage) -> ProcessResult:
        payload = decode_envelope(message.body)
        try:
            value = self._reader.read(payload)
        except Exception:
            logger.warning(
                "Failed to read message %s; leaving it on the queue",
                message.message_id,
                exc_info=True,
            )
            return ProcessResult.PARSE_FAILED

        if value is None:
            logger.debug("Message %s carries no event", message.message_id)
            return ProcessResult.CONSUMED

        try:
            if self._is_async_handler:
                outcome = await self._handler(value)  # type: ignore[misc]
            else:
                outcome = await to_thread.run_sync(self._handler, value)
                # Plain callables may wrap a coroutine function
                if inspect.isawaitable(outcome):
                    outcome = await outcome
        except Exception:
            logger.exception("Handler failed for message %s", message.message_id)
            return ProcessResult.HANDLER_FAILED

        if outcome is None:
            return ProcessResult.CONSUMED
        if not isinstance(outcome, ProcessResult):
            logger.error(
                "Handler returned %r for message %s; expected a ProcessResult",
                outcome,
                message.message_id,
            )
            return ProcessResult.HANDLER_FAILED
        return outcome

    async def _wait_for_completion(self) -> None:
        if self._completion is not None:
            await self._completion.wait()

    def _notify_completion(self) -> None:
        if self._completion is not None:
            event, self._completion = self._completion, anyio.Event()
            event.set()

    def _request_stop(self) -> None:
        self._stop_requested = True
        if self._poll_scope is not None:
            self._poll_scope.cancel()
        self._notify_completion()

    async def close(self) -> None:
        """Stop polling. In-flight messages are still acknowledged."""
        self._closed = True
        self._request_stop()

    async def __aenter__(self) -> "SQSConsumer[T]":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()
