"""Signal-driven graceful shutdown."""

import asyncio
import logging
import signal
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import FrameType
from typing import Any, Protocol

import anyio

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Closeable(Protocol):
    async def close(self) -> None: ...


@asynccontextmanager
async def graceful_shutdown(
    *closeables: Closeable,
    signals: tuple[signal.Signals, ...] = DEFAULT_SIGNALS,
) -> AsyncIterator[None]:
    """Close consumers/publishers when the process receives a signal.

    Consumers stop polling and finish their in-flight messages, so their
    run() calls return normally. Original handlers are restored on exit.
    Requires the asyncio backend.

    Example:
        async with graceful_shutdown(consumer):
            await consumer.run()
    """
    triggered = anyio.Event()
    loop = asyncio.get_running_loop()

    def handler(signum: int, frame: FrameType | None) -> None:
        logger.info("Received signal %s, shutting down", signum)
        # Runs outside the event loop; wakes it even during a long poll
        loop.call_soon_threadsafe(triggered.set)

    async def close_all() -> None:
        await triggered.wait()
        for closeable in closeables:
            await closeable.close()

    originals: dict[signal.Signals, Any] = {}
    for sig in signals:
        originals[sig] = signal.getsignal(sig)
        signal.signal(sig, handler)
    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(close_all)
            try:
                yield
            finally:
                tg.cancel_scope.cancel()
    finally:
        for sig, original in originals.items():
            signal.signal(sig, original)
