"""Batching publisher with per-entry retries."""

import logging
import time
from collections.abc import AsyncGenerator, AsyncIterable, Iterable, Iterator
from dataclasses import dataclass, field

import anyio
from anyio.abc import ObjectReceiveStream, ObjectSendStream

from conveyor.backoff import Backoff
from conveyor.config import PublisherSettings
from conveyor.errors import PublishError, error_code, is_transient_error
from conveyor.message import OutboundMessage
from conveyor.metrics import ConveyorMetrics
from conveyor.targets import BatchTarget

logger = logging.getLogger(__name__)

MISSING_RESULT_CODE = "MissingResult"
ABORTED_CODE = "Aborted"


@dataclass
class PublishFailure:
    """A message that could not be published."""

    message: OutboundMessage
    code: str
    reason: str
    attempts: int


@dataclass
class PublishResult:
    """Outcome of BatchPublisher.publish()."""

    published: int = 0
    """Number of messages accepted by the destination."""

    failed: list[PublishFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        """Raise PublishError if any message could not be published."""
        if self.failed:
            msg = f"{len(self.failed)} message(s) could not be published"
            raise PublishError(msg, failures=list(self.failed), result=self)


@dataclass
class _Entry:
    entry_id: str
    message: OutboundMessage
    attempts: int = 0


class _PublishRun:
    """State shared by the feeder and the workers of one publish() call."""

    def __init__(self) -> None:
        self.result = PublishResult()
        self.retry_pool: list[_Entry] = []
        self.in_flight = 0
        self.idle = anyio.Event()
        self.idle.set()
        self.fatal: BaseException | None = None


async def _iterate(
    messages: Iterable[OutboundMessage] | AsyncIterable[OutboundMessage],
) -> AsyncGenerator[OutboundMessage, None]:
    if isinstance(messages, AsyncIterable):
        iterator = aiter(messages)
        try:
            async for message in iterator:
                yield message
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
    else:
        for message in messages:
            yield message


class BatchPublisher:
    """Publishes messages in batches with bounded concurrency.

    Messages are grouped into batches of up to max_batch_size entries and
    submitted by `concurrency` workers. The feeder blocks while every
    worker is busy, so a fast producer never buffers more than one batch.

    Entries rejected by the destination are pooled and resubmitted in new
    batches, up to max_retries times each, while the rest of their batch
    counts as published. Order is not preserved.

    Example:
        publisher = BatchPublisher(SQSBatchTarget(sqs, queue_url))
        result = await publisher.publish(
            OutboundMessage(payload=order.model_dump_json()) for order in orders
        )
        result.raise_for_failures()
    """

    def __init__(
        self,
        target: BatchTarget,
        settings: PublisherSettings | None = None,
        *,
        metrics: ConveyorMetrics | None = None,
    ) -> None:
        """Initialize the publisher.

        Args:
            target: Queue or topic receiving the batches.
            settings: Batch size, concurrency and retry configuration.
            metrics: Metrics recorder.
        """
        self._target = target
        self._settings = settings or PublisherSettings()
        self._batch_size = min(self._settings.max_batch_size, target.max_batch_size)
        self._backoff = Backoff(self._settings.backoff)
        self._metrics = metrics or ConveyorMetrics()
        self._closed = False

    @property
    def target(self) -> BatchTarget:
        return self._target

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def publish(
        self,
        messages: Iterable[OutboundMessage] | AsyncIterable[OutboundMessage],
    ) -> PublishResult:
        """Publish all messages from an iterable or async iterable.

        Returns a PublishResult listing the messages that still failed after
        their retries.

        Raises:
            PublishError: The destination returned a non-retryable error
                (authorization, not found). The error carries the partial
                result; unsent messages are reported as failed with code
                "Aborted". A plain iterable is read to its end for that, an
                async iterable is not: messages it has not yielded yet are
                left to the caller.
        """
        if self._closed:
            msg = "Publisher is closed"
            raise RuntimeError(msg)

        run = _PublishRun()
        send_stream, receive_stream = anyio.create_memory_object_stream[
            list[_Entry]
        ](0)
        async with anyio.create_task_group() as tg:
            for _ in range(self._settings.concurrency):
                tg.start_soon(self._worker, run, receive_stream.clone())
            receive_stream.close()
            async with send_stream:
                await self._feed(run, messages, send_stream)

        destination = self._target.destination
        if run.fatal is not None:
            for entry in run.retry_pool:
                self._fail(run, entry, ABORTED_CODE, str(run.fatal))
            run.retry_pool.clear()

        failures = run.result.failed
        self._metrics.record_publish_failures(len(failures), destination)
        if run.fatal is not None:
            msg = f"Publishing to {destination} aborted: {run.fatal}"
            raise PublishError(
                msg, failures=list(failures), result=run.result
            ) from run.fatal
        if failures:
            logger.warning(
                "%d message(s) could not be published to %s",
                len(failures),
                destination,
            )
        return run.result

    async def _feed(
        self,
        run: _PublishRun,
        messages: Iterable[OutboundMessage] | AsyncIterable[OutboundMessage],
        send_stream: ObjectSendStream[list[_Entry]],
    ) -> None:
        batch: list[_Entry] = []
        index = 0
        remaining: Iterator[OutboundMessage] | None = None
        if not isinstance(messages, AsyncIterable):
            remaining = iter(messages)
        source = _iterate(messages if remaining is None else remaining)
        try:
            async for message in source:
                batch.append(_Entry(entry_id=str(index), message=message))
                index += 1
                if len(batch) >= self._batch_size:
                    await self._dispatch(run, batch, send_stream)
                    batch = []
                await self._flush_retries(run, send_stream, full_only=True)
                if run.fatal is not None:
                    break
        finally:
            await source.aclose()

        if run.fatal is not None:
            for entry in batch:
                self._fail(run, entry, ABORTED_CODE, str(run.fatal))
            # Messages an async source has not yielded yet are not reported
            if remaining is not None:
                for message in remaining:
                    entry = _Entry(entry_id=str(index), message=message)
                    index += 1
                    self._fail(run, entry, ABORTED_CODE, str(run.fatal))
            return
        if batch:
            await self._dispatch(run, batch, send_stream)

        # Drain: wait for in-flight batches, then resubmit whatever failed
        while run.fatal is None:
            if run.in_flight:
                await run.idle.wait()
                continue
            if not run.retry_pool:
                break
            await self._flush_retries(run, send_stream, full_only=False)

    async def _flush_retries(
        self,
        run: _PublishRun,
        send_stream: ObjectSendStream[list[_Entry]],
        *,
        full_only: bool,
    ) -> None:
        while run.retry_pool and run.fatal is None:
            if full_only and len(run.retry_pool) < self._batch_size:
                return
            batch = run.retry_pool[: self._batch_size]
            del run.retry_pool[: self._batch_size]
            await self._dispatch(run, batch, send_stream)

    async def _dispatch(
        self,
        run: _PublishRun,
        batch: list[_Entry],
        send_stream: ObjectSendStream[list[_Entry]],
    ) -> None:
        if run.in_flight == 0:
            run.idle = anyio.Event()
        run.in_flight += 1
        await send_stream.send(batch)

    async def _worker(
        self,
        run: _PublishRun,
        receive_stream: ObjectReceiveStream[list[_Entry]],
    ) -> None:
        async with receive_stream:
            async for batch in receive_stream:
                try:
                    await self._submit(run, batch)
                finally:
                    run.in_flight -= 1
                    if run.in_flight == 0:
                        run.idle.set()

    async def _submit(self, run: _PublishRun, batch: list[_Entry]) -> None:
        if run.fatal is not None:
            for entry in batch:
                self._fail(run, entry, ABORTED_CODE, str(run.fatal))
            return

        retry_attempt = max(entry.attempts for entry in batch)
        if retry_attempt:
            await anyio.sleep(self._backoff.delay(retry_attempt))

        destination = self._target.destination
        start = time.perf_counter()
        try:
            outcome = await self._target.send_batch(
                [(entry.entry_id, entry.message) for entry in batch]
            )
        except Exception as e:
            self._metrics.record_batch(
                0, time.perf_counter() - start, destination, type(e).__name__
            )
            code = error_code(e) or type(e).__name__
            if not is_transient_error(e):
                logger.error("Fatal error publishing to %s: %s", destination, e)
                run.fatal = e
                for entry in batch:
                    self._fail(run, entry, code, str(e))
                return
            logger.warning(
                "Batch of %d message(s) to %s failed: %s",
                len(batch),
                destination,
                e,
            )
            for entry in batch:
                self._retry_or_fail(run, entry, code, str(e))
            return

        self._metrics.record_batch(
            len(outcome.successful), time.perf_counter() - start, destination
        )
        for entry in batch:
            if entry.entry_id in outcome.successful:
                run.result.published += 1
                continue
            failure = outcome.failed.get(entry.entry_id)
            if failure is None:
                self._retry_or_fail(
                    run, entry, MISSING_RESULT_CODE, "No result returned for entry"
                )
            elif failure.sender_fault:
                entry.attempts += 1
                self._fail(run, entry, failure.code, failure.reason)
            else:
                self._retry_or_fail(run, entry, failure.code, failure.reason)

    def _retry_or_fail(
        self, run: _PublishRun, entry: _Entry, code: str, reason: str
    ) -> None:
        entry.attempts += 1
        if entry.attempts > self._settings.max_retries:
            self._fail(run, entry, code, reason)
        else:
            logger.debug(
                "Retrying entry %s (attempt %d): %s", entry.entry_id, entry.attempts, code
            )
            run.retry_pool.append(entry)

    def _fail(self, run: _PublishRun, entry: _Entry, code: str, reason: str) -> None:
        run.result.failed.append(
            PublishFailure(
                message=entry.message,
                code=code,
                reason=reason,
                attempts=entry.attempts,
            )
        )

    async def close(self) -> None:
        """Close the publisher."""
        self._closed = True

    async def __aenter__(self) -> "BatchPublisher":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()
