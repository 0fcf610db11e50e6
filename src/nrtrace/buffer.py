# src/nrtrace/buffer.py
"""Bounded FIFO buffer between the capture layer and the reporter.

Unlike a ring buffer, a full BatchBuffer rejects the NEW record and leaves its
contents untouched: records already accepted keep their place in the drain
order, and the capture layer counts the rejection as a drop.

Key design decisions:
- push() never blocks or waits: it either appends or raises BufferFull
- Flush eligibility has two triggers: batch_size records buffered, or the
  reporter's flush_interval timeout expiring in wait_ready()
- Ready listeners are invoked outside the lock so a listener can never
  deadlock the instrumented thread that triggered it
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable

import structlog

from nrtrace.errors import BufferFull
from nrtrace.records import Batch, Record

logger = structlog.get_logger(__name__)

ReadyListener = Callable[[], None]


class BatchBuffer:
    """Lock-protected bounded queue of completed records.

    Thread Safety:
        push() may be called from any number of instrumented threads.
        drain_batch() and wait_ready() are meant for a single reporter
        context, which is what guarantees a drained batch has exactly one
        owner.

    Example:
        buffer = BatchBuffer(capacity=10_000, batch_size=500)
        buffer.push(span)
        if buffer.wait_ready(timeout=5.0) or len(buffer):
            batch = buffer.drain_batch()
    """

    def __init__(self, capacity: int = 10_000, batch_size: int = 500) -> None:
        """Initialize the buffer.

        Args:
            capacity: Maximum number of records held at once.
            batch_size: Maximum records per drained batch, and the size
                trigger for flush eligibility.

        Raises:
            ValueError: If capacity or batch_size < 1.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._capacity = capacity
        self._batch_size = batch_size
        self._records: deque[Record] = deque()
        self._cond = threading.Condition(threading.Lock())
        self._closed = False
        self._listeners: list[ReadyListener] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ready(self) -> bool:
        """True when at least batch_size records are waiting."""
        with self._cond:
            return len(self._records) >= self._batch_size

    def add_ready_listener(self, listener: ReadyListener) -> None:
        """Register a callback fired when a push makes the buffer ready."""
        with self._cond:
            self._listeners.append(listener)

    def remove_ready_listener(self, listener: ReadyListener) -> None:
        with self._cond:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def push(self, record: Record) -> None:
        """Append a record without blocking.

        Raises:
            BufferFull: The buffer holds `capacity` records. Nothing changes.
        """
        with self._cond:
            if len(self._records) >= self._capacity:
                raise BufferFull(self._capacity)
            self._records.append(record)
            # Fire only on the transition so a backlog does not re-notify per push
            became_ready = len(self._records) == self._batch_size
            if became_ready:
                self._cond.notify_all()
                listeners = list(self._listeners)
            else:
                listeners = []
        for listener in listeners:
            try:
                listener()
            except Exception as e:
                logger.warning("Buffer ready listener failed", error=str(e))

    def drain_batch(self) -> Batch:
        """Atomically remove and return up to batch_size records, oldest first."""
        with self._cond:
            count = min(self._batch_size, len(self._records))
            return tuple(self._records.popleft() for _ in range(count))

    def wait_ready(self, timeout: float | None) -> bool:
        """Block until the size trigger fires, the buffer closes, or timeout.

        Returns:
            True if at least batch_size records are buffered on return.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: self._closed or len(self._records) >= self._batch_size,
                timeout=timeout,
            )
            return len(self._records) >= self._batch_size

    def close(self) -> None:
        """Wake every waiter. Pushes are still accepted until discard()."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception as e:
                logger.warning("Buffer ready listener failed", error=str(e))

    def discard(self) -> int:
        """Drop everything still buffered. Returns the number discarded."""
        with self._cond:
            count = len(self._records)
            self._records.clear()
            return count

    def __len__(self) -> int:
        with self._cond:
            return len(self._records)
