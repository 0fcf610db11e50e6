# tests/test_hooks.py
"""Tests for the Observability relay and its pluggy hooks."""

from nrtrace.errors import RejectedByServer
from nrtrace.hooks import Observability, create_plugin_manager
from nrtrace.hookspecs import hookimpl
from tests.helpers.fakes import CapturingHooks


class TestObservability:
    def test_drop_hook_receives_counts(self) -> None:
        hooks = CapturingHooks()
        observability = Observability.with_plugins([hooks])
        observability.records_dropped("buffer_full")
        observability.records_dropped("shutdown", 4)
        assert hooks.dropped == [("buffer_full", 1, 1), ("shutdown", 4, 5)]
        assert observability.dropped_total == 5
        assert observability.metrics["dropped_by_reason"] == {"buffer_full": 1, "shutdown": 4}

    def test_zero_count_is_ignored(self) -> None:
        hooks = CapturingHooks()
        observability = Observability.with_plugins([hooks])
        observability.records_dropped("shutdown", 0)
        assert hooks.dropped == []
        assert observability.dropped_total == 0

    def test_delivery_failure_is_counted(self) -> None:
        hooks = CapturingHooks()
        observability = Observability.with_plugins([hooks])
        error = RejectedByServer(401)
        observability.delivery_failed("spans", 12, error)
        assert hooks.failed == [("spans", 12, error)]
        assert observability.metrics["failed_batches"] == 1
        assert observability.metrics["failed_records"] == 12

    def test_failing_hook_is_absorbed(self) -> None:
        class Broken:
            @hookimpl
            def nrtrace_records_dropped(self, reason: str, count: int, dropped_total: int) -> None:
                raise RuntimeError("hook bug")

            @hookimpl
            def nrtrace_delivery_failed(self, kind: str, record_count: int, error: object) -> None:
                raise RuntimeError("hook bug")

        observability = Observability.with_plugins([Broken()])
        observability.records_dropped("buffer_full")
        observability.delivery_failed("logs", 1, RejectedByServer(400))
        assert observability.dropped_total == 1

    def test_many_drops_are_aggregated(self) -> None:
        observability = Observability()
        for _ in range(250):
            observability.records_dropped("buffer_full")
        assert observability.dropped_total == 250
        assert observability._last_logged_drop_count == 200

    def test_plugin_manager_without_plugins(self) -> None:
        manager = create_plugin_manager()
        assert manager.project_name == "nrtrace"
        assert manager.hook.nrtrace_records_dropped.get_hookimpls() == []
