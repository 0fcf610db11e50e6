# src/nrtrace/recorder.py
"""Span and event recorders.

SpanRecorder owns the span-state table: a mapping from the front-end's opaque
span id to the mutable accumulation state of an open span. Parents are
referenced by id and looked up on demand, so overlapping spans never hold
references to each other and may close in any order.

Thread Safety:
    The table lock only guards dict insert/get/pop. Each open span has its own
    lock for attribute merges and finalization, so independent spans running
    on different threads never wait on each other's entry lock.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Mapping

import structlog

from nrtrace.attributes import Attributes
from nrtrace.records import Level, Log, Span, SpanIdentity, severity_for

logger = structlog.get_logger(__name__)


class _OpenSpan:
    """Accumulation state of one open span."""

    __slots__ = ("attributes", "identity", "lock", "name", "parent_span_id", "start_time")

    def __init__(
        self,
        identity: SpanIdentity,
        parent_span_id: str | None,
        name: str,
        start_time: int,
        attributes: Attributes,
    ) -> None:
        self.identity = identity
        self.parent_span_id = parent_span_id
        self.name = name
        self.start_time = start_time
        self.attributes = attributes
        self.lock = threading.Lock()


class SpanRecorder:
    """Converts span lifecycle notifications into immutable Span records.

    Example:
        recorder = SpanRecorder()
        handle = recorder.open(1, None, "load", {"rows": 10},
                               trace_id=tid, span_id=sid, start_time=0)
        recorder.record(handle, {"rows": 12})
        span = recorder.close(handle, end_time=100)
        assert span.duration == 100 and span.attributes["rows"] == 12
    """

    def __init__(self) -> None:
        self._table: dict[Hashable, _OpenSpan] = {}
        self._table_lock = threading.Lock()

    def open(
        self,
        id: Hashable,
        parent_id: Hashable | None,
        name: str,
        attributes: Mapping[str, object] | None,
        *,
        trace_id: str,
        span_id: str,
        start_time: int,
        parent_span_id: str | None = None,
    ) -> Hashable:
        """Create accumulation state for a new span and return its handle.

        parent_id is only used to resolve parent_span_id when the caller did
        not pass it explicitly; the parent entry is never stored.
        """
        if parent_span_id is None and parent_id is not None:
            parent = self.lookup(parent_id)
            if parent is not None:
                parent_span_id = parent.span_id

        state = _OpenSpan(
            identity=SpanIdentity(trace_id=trace_id, span_id=span_id),
            parent_span_id=parent_span_id,
            name=name,
            start_time=start_time,
            attributes=Attributes(attributes),
        )
        with self._table_lock:
            if id in self._table:
                logger.debug("Span id reused while open, replacing state", span=id)
            self._table[id] = state
        return id

    def record(self, handle: Hashable, attributes: Mapping[str, object]) -> bool:
        """Merge attributes into an open span, in arrival order.

        Best effort: an unknown handle (already closed, never opened) is
        ignored and reported as False.
        """
        with self._table_lock:
            state = self._table.get(handle)
        if state is None:
            logger.debug("Attributes recorded on unknown span, ignoring", span=handle)
            return False
        with state.lock:
            state.attributes.merge(attributes)
        return True

    def lookup(self, handle: Hashable) -> SpanIdentity | None:
        """Return the vendor identity of an open span, or None."""
        with self._table_lock:
            state = self._table.get(handle)
        return None if state is None else state.identity

    def close(self, handle: Hashable, end_time: int) -> Span | None:
        """Finalize an open span and remove it from the table.

        Returns None when the handle is unknown.
        """
        with self._table_lock:
            state = self._table.pop(handle, None)
        if state is None:
            logger.debug("Close for unknown span, ignoring", span=handle)
            return None
        # Wait for any merge that fetched this entry before it was removed
        with state.lock:
            attributes = state.attributes.copy()
        return Span(
            trace_id=state.identity.trace_id,
            span_id=state.identity.span_id,
            parent_span_id=state.parent_span_id,
            name=state.name,
            start_time=state.start_time,
            duration=max(0, end_time - state.start_time),
            attributes=attributes,
        )

    def clear(self) -> int:
        """Drop all open spans (shutdown). Returns how many were discarded."""
        with self._table_lock:
            count = len(self._table)
            self._table.clear()
        return count

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._table)


class EventRecorder:
    """Converts point-in-time notifications into Log records. Stateless."""

    def record(
        self,
        enclosing: SpanIdentity | None,
        level: Level | str | int | None,
        message: str,
        attributes: Mapping[str, object] | None,
        timestamp: int,
    ) -> Log:
        return Log(
            timestamp=timestamp,
            message=message,
            severity=severity_for(level),
            attributes=Attributes(attributes),
            trace_id=None if enclosing is None else enclosing.trace_id,
            span_id=None if enclosing is None else enclosing.span_id,
        )
