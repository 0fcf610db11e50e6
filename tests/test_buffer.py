# tests/test_buffer.py
"""Tests for BatchBuffer bounds, drain order and readiness signalling."""

import threading
import time

import pytest
from hypothesis import given
from hypothesis import strategies as st

from nrtrace.buffer import BatchBuffer
from nrtrace.errors import BufferFull
from tests.helpers.fakes import make_log


class TestBatchBuffer:
    def test_rejects_invalid_sizes(self) -> None:
        with pytest.raises(ValueError):
            BatchBuffer(capacity=0)
        with pytest.raises(ValueError):
            BatchBuffer(batch_size=0)

    def test_full_buffer_rejects_new_record_and_keeps_contents(self) -> None:
        buffer = BatchBuffer(capacity=2, batch_size=2)
        first, second, third = make_log("1"), make_log("2"), make_log("3")
        buffer.push(first)
        buffer.push(second)
        with pytest.raises(BufferFull) as exc_info:
            buffer.push(third)
        assert exc_info.value.capacity == 2
        assert buffer.drain_batch() == (first, second)

    def test_drain_is_fifo_and_bounded(self) -> None:
        buffer = BatchBuffer(capacity=10, batch_size=3)
        records = [make_log(str(i)) for i in range(5)]
        for record in records:
            buffer.push(record)
        assert buffer.drain_batch() == tuple(records[:3])
        assert buffer.drain_batch() == tuple(records[3:])
        assert buffer.drain_batch() == ()

    def test_ready_listener_fires_once_on_transition(self) -> None:
        buffer = BatchBuffer(capacity=10, batch_size=2)
        calls = []
        buffer.add_ready_listener(lambda: calls.append(len(buffer)))
        for i in range(4):
            buffer.push(make_log(str(i)))
        assert calls == [2]

    def test_failing_listener_does_not_break_push(self) -> None:
        buffer = BatchBuffer(capacity=10, batch_size=1)

        def explode() -> None:
            raise RuntimeError("boom")

        buffer.add_ready_listener(explode)
        buffer.push(make_log())
        assert len(buffer) == 1

    def test_removed_listener_is_not_called(self) -> None:
        buffer = BatchBuffer(capacity=10, batch_size=1)
        calls: list[int] = []

        def listener() -> None:
            calls.append(1)

        buffer.add_ready_listener(listener)
        buffer.remove_ready_listener(listener)
        buffer.push(make_log())
        assert calls == []

    def test_wait_ready_times_out_below_batch_size(self) -> None:
        buffer = BatchBuffer(capacity=10, batch_size=5)
        buffer.push(make_log())
        started = time.monotonic()
        assert buffer.wait_ready(timeout=0.05) is False
        assert time.monotonic() - started >= 0.04

    def test_wait_ready_wakes_on_push(self) -> None:
        buffer = BatchBuffer(capacity=10, batch_size=2)
        result: list[bool] = []
        waiter = threading.Thread(target=lambda: result.append(buffer.wait_ready(timeout=5.0)))
        waiter.start()
        buffer.push(make_log())
        buffer.push(make_log())
        waiter.join(timeout=5.0)
        assert result == [True]

    def test_close_wakes_waiters(self) -> None:
        buffer = BatchBuffer(capacity=10, batch_size=5)
        result: list[bool] = []
        waiter = threading.Thread(target=lambda: result.append(buffer.wait_ready(timeout=5.0)))
        waiter.start()
        time.sleep(0.05)
        buffer.close()
        waiter.join(timeout=5.0)
        assert result == [False]
        assert buffer.closed

    def test_discard_counts_records(self) -> None:
        buffer = BatchBuffer(capacity=10, batch_size=5)
        for _ in range(3):
            buffer.push(make_log())
        assert buffer.discard() == 3
        assert len(buffer) == 0


class TestBufferProperties:
    @given(
        capacity=st.integers(1, 20),
        batch_size=st.integers(1, 20),
        ops=st.lists(st.booleans(), max_size=100),
    )
    def test_bounds_and_order(self, capacity: int, batch_size: int, ops: list[bool]) -> None:
        """True pushes, False drains; the buffer behaves like a bounded FIFO."""
        buffer = BatchBuffer(capacity=capacity, batch_size=batch_size)
        model: list[object] = []
        counter = 0
        for push in ops:
            if push:
                record = make_log(str(counter))
                counter += 1
                if len(model) >= capacity:
                    with pytest.raises(BufferFull):
                        buffer.push(record)
                else:
                    buffer.push(record)
                    model.append(record)
            else:
                expected = min(batch_size, len(model))
                batch = buffer.drain_batch()
                assert len(batch) == expected
                assert list(batch) == model[:expected]
                del model[:expected]
            assert len(buffer) == len(model) <= capacity
