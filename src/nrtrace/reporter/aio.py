# src/nrtrace/reporter/aio.py
"""AsyncReporter: delivers batches from an asyncio task.

Shares ReportCore with BlockingReporter; only transmission differs. The task
sleeps until the buffer signals readiness (via loop.call_soon_threadsafe, so
instrumented threads outside the loop can wake it) or flush_interval
elapses.

Thread Safety:
    The reporter task is the only consumer of the buffer. Instrumented code
    on any thread only pushes.
"""

from __future__ import annotations

import asyncio

import structlog
from tenacity import AsyncRetrying

from nrtrace.buffer import BatchBuffer
from nrtrace.config import BridgeSettings
from nrtrace.errors import Timeout
from nrtrace.hooks import Observability
from nrtrace.records import Batch
from nrtrace.reporter.core import Payload, ReportCore
from nrtrace.reporter.protocols import AsyncTransport
from nrtrace.reporter.transport import AsyncHttpTransport

logger = structlog.get_logger(__name__)


class AsyncReporter:
    """Reporter that sends from a task on an asyncio event loop.

    start() must run on the loop's thread, or be given the loop explicitly.

    Example:
        async def main():
            layer = NewRelicLayer(AsyncReporter.from_settings(settings), settings)
            ...
            await layer.ashutdown()
    """

    name = "async"

    def __init__(
        self,
        core: ReportCore,
        transport: AsyncTransport,
        *,
        flush_interval: float = 5.0,
        shutdown_grace: float = 5.0,
    ) -> None:
        self._core = core
        self._transport = transport
        self._flush_interval = flush_interval
        self._shutdown_grace = shutdown_grace
        self._buffer: BatchBuffer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._closed = False
        self._batches_sent = 0

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> AsyncReporter:
        return cls(
            ReportCore.from_settings(settings),
            AsyncHttpTransport.from_settings(settings),
            flush_interval=settings.flush_interval,
            shutdown_grace=settings.shutdown_grace,
        )

    @property
    def core(self) -> ReportCore:
        return self._core

    @property
    def batches_sent(self) -> int:
        return self._batches_sent

    def start(
        self,
        buffer: BatchBuffer,
        observability: Observability,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if self._loop is not None:
            raise RuntimeError(f"{type(self).__name__} already started")
        self._buffer = buffer
        self._core.bind(observability)
        if loop is None:
            loop = asyncio.get_running_loop()
        self._loop = loop
        buffer.add_ready_listener(self._notify)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._task = loop.create_task(self._run(), name="nrtrace-reporter")
        else:
            loop.call_soon_threadsafe(self._spawn)

    def _spawn(self) -> None:
        assert self._loop is not None
        self._task = self._loop.create_task(self._run(), name="nrtrace-reporter")

    def _notify(self) -> None:
        # Called from whichever thread pushed the record
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._wakeup.set)
        except RuntimeError:
            # Loop closed between the check and the call
            pass

    # -- delivery ------------------------------------------------------------

    async def send(self, batch: Batch, *, deadline: float | None = None) -> None:
        """Serialize, compress and transmit one batch within max_elapsed.

        Raises:
            DeliveryFailed: Some or all records were abandoned.
        """
        delivery = self._core.delivery(batch, deadline=deadline)
        for payload in delivery:
            try:
                await self._transmit_with_retry(payload, delivery.deadline)
            except Exception as e:
                delivery.abandon(payload, e)
        delivery.finish()

    async def _transmit_once(self, payload: Payload, deadline: float) -> None:
        timeout = self._core.attempt_timeout(deadline)
        try:
            await asyncio.wait_for(self._transport.transmit(payload.endpoint, payload.body), timeout=timeout)
        except TimeoutError as e:
            raise Timeout(f"{payload.kind} request timed out after {timeout:.3f}s") from e

    async def _transmit_with_retry(self, payload: Payload, deadline: float) -> None:
        async for attempt in AsyncRetrying(**self._core.retry_arguments(payload.kind, deadline=deadline)):
            with attempt:
                await self._transmit_once(payload, deadline)

    async def deliver(self, batch: Batch, *, deadline: float | None = None) -> bool:
        """send() with every failure absorbed and reported once per batch."""
        try:
            await self.send(batch, deadline=deadline)
        except Exception as e:
            self._core.record_failure(batch, e)
            return False
        self._batches_sent += 1
        return True

    # -- reporter task ---------------------------------------------------------

    async def _run(self) -> None:
        assert self._buffer is not None
        buffer = self._buffer
        while not self._stopping:
            if not buffer.ready:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self._flush_interval)
                except TimeoutError:
                    pass
                self._wakeup.clear()
            if self._stopping:
                break
            batch = buffer.drain_batch()
            if batch:
                try:
                    await self.deliver(batch)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("Reporter task failed to deliver batch", error=str(e))

    async def aclose(self, grace: float | None = None) -> None:
        """Stop the task after one bounded best-effort flush. Idempotent."""
        if self._closed:
            return
        self._closed = True
        grace = self._shutdown_grace if grace is None else grace
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace

        self._stopping = True
        self._wakeup.set()
        if self._buffer is not None:
            self._buffer.remove_ready_listener(self._notify)

        if self._task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=max(0.0, deadline - loop.time()))
            except TimeoutError:
                self._task.cancel()
                logger.error("Reporter task did not stop within grace period", grace=grace)
            except Exception as e:
                logger.error("Reporter task ended with error", error=str(e))

        if self._buffer is not None:
            await self._final_flush(self._buffer, loop, deadline)
            discarded = self._buffer.discard()
            if discarded:
                self._core.observability.records_dropped("shutdown", discarded)

        try:
            await self._transport.aclose()
        except Exception as e:
            logger.warning("Transport close failed", error=str(e))
        logger.info("Reporter closed", reporter=self.name, batches_sent=self._batches_sent)

    async def _final_flush(self, buffer: BatchBuffer, loop: asyncio.AbstractEventLoop, deadline: float) -> None:
        # tenacity deadlines use time.monotonic(); loop.time() is monotonic too
        while loop.time() < deadline:
            batch = buffer.drain_batch()
            if not batch:
                return
            try:
                await asyncio.wait_for(self.deliver(batch, deadline=deadline), timeout=deadline - loop.time())
            except TimeoutError:
                self._core.observability.records_dropped("shutdown", len(batch))
                return

    def close(self, grace: float | None = None) -> None:
        """Blocking close for callers outside the reporter's event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            self._closed = True
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            raise RuntimeError("AsyncReporter.close() called from its own event loop; await aclose() instead")
        grace = self._shutdown_grace if grace is None else grace
        future = asyncio.run_coroutine_threadsafe(self.aclose(grace), loop)
        future.result(timeout=grace + 1.0)
