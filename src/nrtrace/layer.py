# src/nrtrace/layer.py
"""NewRelicLayer: the subscriber-facing capture layer.

Receives lifecycle notifications from the instrumentation front-end on the
instrumented program's own threads, turns them into Span/Log records via the
recorders, and hands finished records to the batching buffer.

Design principles:
- Fail-open: no exception raised here ever reaches the instrumented program
- Bounded latency: no I/O and no lock held across I/O on the call path;
  buffer pushes either succeed immediately or are counted as drops
- The span table and the buffer are created here once, and torn down
  together with the reporter in shutdown()

Thread Safety:
    Every notification may be called concurrently from any thread or task.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable, Hashable, Iterable, Mapping
from types import TracebackType
from typing import Any, Protocol, TypeVar, runtime_checkable

import structlog

from nrtrace.buffer import BatchBuffer
from nrtrace.config import BridgeSettings
from nrtrace.errors import BufferFull
from nrtrace.hooks import Observability
from nrtrace.ids import IdGenerator, RandomIdGenerator, now_micros
from nrtrace.records import Level, Record, SpanIdentity
from nrtrace.recorder import EventRecorder, SpanRecorder
from nrtrace.reporter.protocols import Reporter

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@runtime_checkable
class SpanContextProvider(Protocol):
    """Front-end query for the active span of the calling execution context."""

    def current_span_id(self) -> Hashable | None: ...


def _fail_open(default: Any = None) -> Callable[[F], F]:
    """Log and swallow any exception raised by a notification handler."""

    def decorator(method: F) -> F:
        @functools.wraps(method)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return method(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    "Capture layer notification failed",
                    notification=method.__name__,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return default

        return wrapper  # type: ignore[return-value]

    return decorator


class NewRelicLayer:
    """Bridges span/event notifications to the reporter.

    Example:
        settings = BridgeSettings.create(api={"key": api_key})
        layer = NewRelicLayer(BlockingReporter.from_settings(settings), settings)
        layer.on_span_create(1, None, "request", {"http.method": "GET"})
        layer.on_event(1, Level.INFO, "handled", {})
        layer.on_span_close(1)
        layer.shutdown()
    """

    def __init__(
        self,
        reporter: Reporter,
        settings: BridgeSettings,
        *,
        hooks: Iterable[Any] = (),
        observability: Observability | None = None,
        id_generator: IdGenerator | None = None,
        clock: Callable[[], int] | None = None,
        context: SpanContextProvider | None = None,
    ) -> None:
        """Build the span table and buffer and start the reporter.

        Args:
            reporter: Reporter that drains the buffer
            settings: Validated bridge settings
            hooks: pluggy plugins implementing nrtrace hookspecs
            observability: Pre-built relay (overrides hooks)
            id_generator: Trace/span id source (random by default)
            clock: Epoch-microsecond clock (wall clock by default)
            context: Front-end lookup for the active span; may also be
                attached later with set_context()
        """
        self._settings = settings
        self._ids = id_generator if id_generator is not None else RandomIdGenerator()
        self._clock = clock if clock is not None else now_micros
        self._context = context
        self._spans = SpanRecorder()
        self._events = EventRecorder()
        self._buffer = BatchBuffer(capacity=settings.buffer_capacity, batch_size=settings.batch_size)
        self._observability = observability if observability is not None else Observability.with_plugins(hooks)
        self._reporter = reporter
        self._shutdown = False
        reporter.start(self._buffer, self._observability)
        logger.debug(
            "nrtrace layer started",
            reporter=reporter.name,
            batch_size=settings.batch_size,
            buffer_capacity=settings.buffer_capacity,
        )

    @property
    def buffer(self) -> BatchBuffer:
        return self._buffer

    @property
    def reporter(self) -> Reporter:
        return self._reporter

    @property
    def observability(self) -> Observability:
        return self._observability

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def set_context(self, context: SpanContextProvider | None) -> None:
        self._context = context

    # -- notifications -------------------------------------------------------

    @_fail_open()
    def on_span_create(
        self,
        id: Hashable,
        parent_id: Hashable | None,
        name: str,
        static_attrs: Mapping[str, object] | None = None,
    ) -> None:
        if self._shutdown:
            return
        parent = self._spans.lookup(parent_id) if parent_id is not None else None
        # Nested spans share the parent's trace; everything else starts one
        trace_id = parent.trace_id if parent is not None else self._ids.new_trace_id()
        self._spans.open(
            id,
            parent_id,
            name,
            static_attrs,
            trace_id=trace_id,
            span_id=self._ids.new_span_id(),
            start_time=self._clock(),
            parent_span_id=None if parent is None else parent.span_id,
        )

    @_fail_open(default=False)
    def on_span_record(self, id: Hashable, attrs: Mapping[str, object]) -> bool:
        if self._shutdown:
            return False
        return self._spans.record(id, attrs)

    @_fail_open()
    def on_span_close(self, id: Hashable) -> None:
        span = self._spans.close(id, self._clock())
        if span is None:
            return
        if self._shutdown:
            self._observability.records_dropped("closed")
            return
        self._push(span)

    @_fail_open()
    def on_event(
        self,
        enclosing_id: Hashable | None,
        level: Level | str | int | None,
        message: str,
        attrs: Mapping[str, object] | None = None,
    ) -> None:
        if self._shutdown:
            self._observability.records_dropped("closed")
            return
        enclosing: SpanIdentity | None = None
        if enclosing_id is not None:
            enclosing = self._spans.lookup(enclosing_id)
        self._push(self._events.record(enclosing, level, message, attrs, self._clock()))

    # -- context-resolving variants --------------------------------------------

    def _current_span_id(self) -> Hashable | None:
        if self._context is None:
            return None
        return self._context.current_span_id()

    @_fail_open(default=False)
    def record_current(self, attrs: Mapping[str, object]) -> bool:
        """Merge attributes into the active span of the calling context."""
        span_id = self._current_span_id()
        if span_id is None:
            return False
        return self.on_span_record(span_id, attrs)

    @_fail_open()
    def event_current(
        self,
        level: Level | str | int | None,
        message: str,
        attrs: Mapping[str, object] | None = None,
    ) -> None:
        """Emit an event linked to the active span of the calling context."""
        self.on_event(self._current_span_id(), level, message, attrs)

    def _push(self, record: Record) -> None:
        try:
            self._buffer.push(record)
        except BufferFull:
            self._observability.records_dropped("buffer_full")

    # -- teardown ------------------------------------------------------------

    def _discard_unsent(self) -> None:
        discarded = self._buffer.discard()
        if discarded:
            self._observability.records_dropped("shutdown", discarded)

    def _finish_teardown(self) -> None:
        open_spans = self._spans.clear()
        if open_spans:
            logger.info("Discarding spans still open at shutdown", count=open_spans)
        logger.info("nrtrace layer shut down", **self.health_metrics)

    def shutdown(self, grace: float | None = None) -> None:
        """Stop capturing, run the reporter's bounded final flush, tear down.

        Idempotent. Never raises.
        """
        if self._shutdown:
            return
        self._shutdown = True
        try:
            self._reporter.close(grace)
        except Exception as e:
            # e.g. AsyncReporter closed from its own loop; ashutdown() is the way there
            logger.error("Reporter close failed", reporter=self._reporter.name, error=str(e))
            self._discard_unsent()
        self._finish_teardown()

    async def ashutdown(self, grace: float | None = None) -> None:
        """Async shutdown; awaits aclose() on reporters that provide it."""
        if self._shutdown:
            return
        self._shutdown = True
        try:
            aclose = getattr(self._reporter, "aclose", None)
            if aclose is not None:
                await aclose(grace)
            else:
                await asyncio.to_thread(self._reporter.close, grace)
        except Exception as e:
            logger.error("Reporter close failed", reporter=self._reporter.name, error=str(e))
            self._discard_unsent()
        self._finish_teardown()

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot of capture/delivery health. Approximately consistent."""
        return {
            "spans_open": len(self._spans),
            "buffer_depth": len(self._buffer),
            "buffer_capacity": self._buffer.capacity,
            **self._observability.metrics,
        }

    def __enter__(self) -> NewRelicLayer:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    async def __aenter__(self) -> NewRelicLayer:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.ashutdown()
