# src/nrtrace/reporter/blocking.py
"""BlockingReporter: delivers batches from a dedicated worker thread.

The instrumented program's threads only ever push into the BatchBuffer. All
network I/O, retries and backoff sleeps happen on the reporter thread.

Thread Safety:
    - start() and close() are called by the capture layer
    - _run() runs exclusively in the reporter thread and is the only
      consumer of the buffer, so a drained batch has exactly one owner and
      batches go out in drain order
"""

from __future__ import annotations

import threading
import time

import structlog
from tenacity import Retrying

from nrtrace.buffer import BatchBuffer
from nrtrace.config import BridgeSettings
from nrtrace.hooks import Observability
from nrtrace.records import Batch
from nrtrace.reporter.core import Payload, ReportCore
from nrtrace.reporter.protocols import Transport
from nrtrace.reporter.transport import HttpTransport

logger = structlog.get_logger(__name__)


class BlockingReporter:
    """Reporter that sends on its own thread with blocking HTTP.

    Example:
        reporter = BlockingReporter.from_settings(settings)
        layer = NewRelicLayer(reporter, settings)
        ...
        layer.shutdown()  # bounded final flush, then reporter.close()
    """

    name = "blocking"

    def __init__(
        self,
        core: ReportCore,
        transport: Transport,
        *,
        flush_interval: float = 5.0,
        shutdown_grace: float = 5.0,
    ) -> None:
        self._core = core
        self._transport = transport
        self._flush_interval = flush_interval
        self._shutdown_grace = shutdown_grace
        self._buffer: BatchBuffer | None = None
        self._thread: threading.Thread | None = None
        self._thread_ready = threading.Event()
        self._stop = threading.Event()
        self._deadline: float | None = None
        self._closed = False
        self._batches_sent = 0

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> BlockingReporter:
        return cls(
            ReportCore.from_settings(settings),
            HttpTransport.from_settings(settings),
            flush_interval=settings.flush_interval,
            shutdown_grace=settings.shutdown_grace,
        )

    @property
    def core(self) -> ReportCore:
        return self._core

    @property
    def batches_sent(self) -> int:
        return self._batches_sent

    def start(self, buffer: BatchBuffer, observability: Observability) -> None:
        if self._thread is not None:
            raise RuntimeError(f"{type(self).__name__} already started")
        self._buffer = buffer
        self._core.bind(observability)
        # Daemon: a host that never calls shutdown() must still be able to exit
        self._thread = threading.Thread(target=self._run, name="nrtrace-reporter", daemon=True)
        self._thread.start()
        self._thread_ready.wait(timeout=5.0)

    # -- delivery ------------------------------------------------------------

    def send(self, batch: Batch, *, deadline: float | None = None) -> None:
        """Serialize, compress and transmit one batch within max_elapsed.

        Raises:
            DeliveryFailed: Some or all records were abandoned.
        """
        delivery = self._core.delivery(batch, deadline=deadline)
        for payload in delivery:
            try:
                self._transmit_with_retry(payload, delivery.deadline)
            except Exception as e:
                delivery.abandon(payload, e)
        delivery.finish()

    def _transmit_with_retry(self, payload: Payload, deadline: float) -> None:
        for attempt in Retrying(**self._core.retry_arguments(payload.kind, deadline=deadline)):
            with attempt:
                self._transport.transmit(
                    payload.endpoint,
                    payload.body,
                    timeout=self._core.attempt_timeout(deadline),
                )

    def deliver(self, batch: Batch, *, deadline: float | None = None) -> bool:
        """send() with every failure absorbed and reported once per batch."""
        try:
            self.send(batch, deadline=deadline)
        except Exception as e:
            self._core.record_failure(batch, e)
            return False
        self._batches_sent += 1
        return True

    # -- worker thread ---------------------------------------------------------

    def _run(self) -> None:
        self._thread_ready.set()
        assert self._buffer is not None
        buffer = self._buffer
        try:
            while not self._stop.is_set():
                buffer.wait_ready(self._flush_interval)
                if self._stop.is_set():
                    break
                batch = buffer.drain_batch()
                if batch:
                    self.deliver(batch)
            self._final_flush(buffer)
        except Exception as e:
            # CRITICAL: log but don't crash the host
            logger.error("Reporter thread failed unexpectedly", error=str(e))

    def _final_flush(self, buffer: BatchBuffer) -> None:
        deadline = self._deadline if self._deadline is not None else time.monotonic()
        while time.monotonic() < deadline:
            batch = buffer.drain_batch()
            if not batch:
                return
            self.deliver(batch, deadline=deadline)

    def close(self, grace: float | None = None) -> None:
        """Stop the worker after one bounded best-effort flush.

        Shutdown sequence:
        1. Set the flush deadline, then signal stop and wake the worker
        2. The worker drains and sends until empty or the deadline passes
        3. Wait for the worker at most `grace` seconds
        4. Discard whatever is left, count it, release the transport

        Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        grace = self._shutdown_grace if grace is None else grace
        self._deadline = time.monotonic() + grace

        self._stop.set()
        if self._buffer is not None:
            self._buffer.close()
        if self._thread is not None:
            self._thread.join(timeout=grace)
            if self._thread.is_alive():
                logger.error("Reporter thread did not finish final flush within grace period", grace=grace)

        if self._buffer is not None:
            discarded = self._buffer.discard()
            if discarded:
                self._core.observability.records_dropped("shutdown", discarded)

        try:
            self._transport.close()
        except Exception as e:
            logger.warning("Transport close failed", error=str(e))
        logger.info("Reporter closed", reporter=self.name, batches_sent=self._batches_sent)
