# tests/test_recorder.py
"""Tests for SpanRecorder and EventRecorder.

Property tests cover:
1. Parent linkage reflects nesting at creation, regardless of close order
2. Attribute isolation between concurrently open spans
3. Last-write-wins merging across record() calls
"""

import threading

from hypothesis import given
from hypothesis import strategies as st

from nrtrace.records import Level, Severity, SpanIdentity
from nrtrace.recorder import EventRecorder, SpanRecorder


def _open(recorder: SpanRecorder, handle: int, parent: int | None, start: int = 0, **attrs: object) -> None:
    recorder.open(
        handle,
        parent,
        f"span-{handle}",
        attrs,
        trace_id="t" * 32,
        span_id=f"{handle:016x}",
        start_time=start,
    )


class TestSpanRecorder:
    def test_record_then_close(self) -> None:
        """open s1 at 0, record k=1 then k=2, close at 100."""
        recorder = SpanRecorder()
        _open(recorder, 1, None, start=0)
        recorder.record(1, {"k": 1})
        recorder.record(1, {"k": 2})
        span = recorder.close(1, end_time=100)

        assert span is not None
        assert span.duration == 100
        assert span.attributes == {"k": 2}
        assert span.is_root

    def test_nested_spans(self) -> None:
        recorder = SpanRecorder()
        _open(recorder, 1, None, start=0)
        _open(recorder, 2, 1, start=0)
        s2 = recorder.close(2, end_time=50)
        s1 = recorder.close(1, end_time=200)

        assert s1 is not None and s2 is not None
        assert s2.parent_span_id == s1.span_id
        assert s2.duration == 50
        assert s1.duration == 200

    def test_parent_closed_first_keeps_link(self) -> None:
        recorder = SpanRecorder()
        _open(recorder, 1, None)
        _open(recorder, 2, 1)
        s1 = recorder.close(1, end_time=10)
        s2 = recorder.close(2, end_time=20)
        assert s1 is not None and s2 is not None
        assert s2.parent_span_id == s1.span_id

    def test_unknown_handle_is_ignored(self) -> None:
        recorder = SpanRecorder()
        assert recorder.record(99, {"k": 1}) is False
        assert recorder.close(99, end_time=1) is None
        assert recorder.lookup(99) is None

    def test_unknown_parent_makes_root(self) -> None:
        recorder = SpanRecorder()
        _open(recorder, 2, 1)
        span = recorder.close(2, end_time=1)
        assert span is not None
        assert span.parent_span_id is None

    def test_clock_going_backwards_clamps_duration(self) -> None:
        recorder = SpanRecorder()
        _open(recorder, 1, None, start=100)
        span = recorder.close(1, end_time=90)
        assert span is not None
        assert span.duration == 0

    def test_closed_span_is_immutable_snapshot(self) -> None:
        recorder = SpanRecorder()
        _open(recorder, 1, None, k="a")
        span = recorder.close(1, end_time=1)
        assert recorder.record(1, {"k": "b"}) is False
        assert span is not None
        assert span.attributes["k"] == "a"

    def test_clear_reports_open_spans(self) -> None:
        recorder = SpanRecorder()
        _open(recorder, 1, None)
        _open(recorder, 2, None)
        assert len(recorder) == 2
        assert recorder.clear() == 2
        assert len(recorder) == 0

    def test_concurrent_threads_do_not_share_attributes(self) -> None:
        recorder = SpanRecorder()
        results = {}

        def worker(handle: int) -> None:
            _open(recorder, handle, None)
            for i in range(200):
                recorder.record(handle, {"owner": handle, f"i{i % 5}": i})
            results[handle] = recorder.close(handle, end_time=1)

        threads = [threading.Thread(target=worker, args=(h,)) for h in range(1, 9)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for handle, span in results.items():
            assert span is not None
            assert span.attributes["owner"] == handle
            assert span.name == f"span-{handle}"


@st.composite
def _nesting(draw: st.DrawFn) -> tuple[list[int | None], list[int]]:
    """Parents for spans 0..n-1 (each parent opened earlier) and a close order."""
    count = draw(st.integers(min_value=1, max_value=12))
    parents: list[int | None] = []
    for index in range(count):
        parents.append(draw(st.one_of(st.none(), st.integers(0, index - 1))) if index else None)
    order = draw(st.permutations(range(count)))
    return parents, list(order)


class TestRecorderProperties:
    @given(case=_nesting())
    def test_parent_links_follow_creation_nesting(self, case: tuple[list[int | None], list[int]]) -> None:
        parents, close_order = case
        recorder = SpanRecorder()
        for handle, parent in enumerate(parents):
            _open(recorder, handle, parent)

        spans = {handle: recorder.close(handle, end_time=1) for handle in close_order}

        for handle, parent in enumerate(parents):
            span = spans[handle]
            assert span is not None
            expected = None if parent is None else f"{parent:016x}"
            assert span.parent_span_id == expected

    @given(
        writes=st.lists(
            st.tuples(st.integers(0, 3), st.sampled_from(["a", "b", "c"]), st.integers()),
            max_size=40,
        )
    )
    def test_interleaved_writes_stay_isolated(self, writes: list[tuple[int, str, int]]) -> None:
        recorder = SpanRecorder()
        for handle in range(4):
            _open(recorder, handle, None)
        expected: dict[int, dict[str, int]] = {handle: {} for handle in range(4)}
        for handle, key, value in writes:
            recorder.record(handle, {key: value})
            expected[handle][key] = value

        for handle in range(4):
            span = recorder.close(handle, end_time=1)
            assert span is not None
            assert span.attributes.to_dict() == expected[handle]


class TestEventRecorder:
    def test_links_to_enclosing_span(self) -> None:
        log = EventRecorder().record(
            SpanIdentity(trace_id="a" * 32, span_id="b" * 16),
            Level.WARN,
            "careful",
            {"n": 1},
            timestamp=42,
        )
        assert log.trace_id == "a" * 32
        assert log.span_id == "b" * 16
        assert log.severity is Severity.WARN
        assert log.attributes == {"n": 1}
        assert log.timestamp == 42

    def test_unlinked_event(self) -> None:
        log = EventRecorder().record(None, "nonsense", "msg", None, timestamp=1)
        assert log.trace_id is None
        assert log.severity is Severity.INFO
        assert len(log.attributes) == 0
