# src/nrtrace/reporter/noop.py
"""NoopReporter: drains batches and logs a summary instead of sending.

Useful for local development and for checking what instrumentation
produces without an API key round-trip.
"""

from __future__ import annotations

from collections import deque

import structlog

from nrtrace.config import BridgeSettings
from nrtrace.records import Batch
from nrtrace.reporter.blocking import BlockingReporter
from nrtrace.reporter.core import ReportCore

logger = structlog.get_logger(__name__)


class _NullTransport:
    def transmit(self, endpoint: object, body: bytes) -> None:
        return None

    def close(self) -> None:
        return None


class NoopReporter(BlockingReporter):
    """Same worker loop as BlockingReporter, but send() only logs."""

    name = "noop"

    def __init__(self, core: ReportCore, *, flush_interval: float = 5.0, shutdown_grace: float = 5.0) -> None:
        super().__init__(core, _NullTransport(), flush_interval=flush_interval, shutdown_grace=shutdown_grace)
        # Most recent batches only, for inspection
        self.batches: deque[Batch] = deque(maxlen=100)

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> NoopReporter:
        return cls(
            ReportCore.from_settings(settings),
            flush_interval=settings.flush_interval,
            shutdown_grace=settings.shutdown_grace,
        )

    def send(self, batch: Batch, *, deadline: float | None = None) -> None:
        spans, logs = self._core.partition(batch)
        self.batches.append(batch)
        logger.info(
            "Telemetry batch (noop)",
            spans=len(spans),
            logs=len(logs),
            span_names=[span.name for span in spans],
        )
