# src/nrtrace/hooks.py
"""Observability relay: drop/failure counting, aggregate logging, hook calls.

Shared by the capture layer (buffer-full drops) and the reporters
(serialization drops, abandoned batches, shutdown discards).

Design principles:
- Counts only, never payloads
- Aggregate logging every 100 drops to prevent Warning Fatigue
- A failing hook implementation is logged and ignored
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

import pluggy
import structlog

from nrtrace.errors import ReportError
from nrtrace.hookspecs import PROJECT_NAME, NrTraceSpec

logger = structlog.get_logger(__name__)


def create_plugin_manager(plugins: Iterable[Any] = ()) -> pluggy.PluginManager:
    """Build a plugin manager with nrtrace hookspecs and the given plugins."""
    manager = pluggy.PluginManager(PROJECT_NAME)
    manager.add_hookspecs(NrTraceSpec)
    for plugin in plugins:
        manager.register(plugin)
    manager.check_pending()
    return manager


class Observability:
    """Counts dropped and undelivered records and notifies hook plugins.

    Thread Safety:
        Counters are guarded by a lock: drops are reported from instrumented
        threads, delivery failures from the reporter context.
    """

    _LOG_INTERVAL = 100

    def __init__(self, plugin_manager: pluggy.PluginManager | None = None) -> None:
        self._pm = plugin_manager if plugin_manager is not None else create_plugin_manager()
        self._lock = threading.Lock()
        self._dropped_total = 0
        self._last_logged_drop_count = 0
        self._dropped_by_reason: dict[str, int] = {}
        self._failed_batches = 0
        self._failed_records = 0

    @classmethod
    def with_plugins(cls, plugins: Iterable[Any] = ()) -> Observability:
        return cls(create_plugin_manager(plugins))

    @property
    def plugin_manager(self) -> pluggy.PluginManager:
        return self._pm

    def records_dropped(self, reason: str, count: int = 1) -> None:
        if count <= 0:
            return
        with self._lock:
            self._dropped_total += count
            self._dropped_by_reason[reason] = self._dropped_by_reason.get(reason, 0) + count
            dropped_total = self._dropped_total
            if dropped_total - self._last_logged_drop_count >= self._LOG_INTERVAL:
                log_now = dropped_total - self._last_logged_drop_count
                self._last_logged_drop_count = dropped_total
            else:
                log_now = 0

        if log_now:
            logger.warning(
                "Telemetry records dropped",
                reason=reason,
                dropped_since_last_log=log_now,
                dropped_total=dropped_total,
            )
        elif reason != "buffer_full":
            # Rare reasons are logged individually
            logger.warning("Telemetry records dropped", reason=reason, count=count, dropped_total=dropped_total)

        try:
            self._pm.hook.nrtrace_records_dropped(reason=reason, count=count, dropped_total=dropped_total)
        except Exception as e:
            logger.warning("nrtrace_records_dropped hook failed", error=str(e))

    def delivery_failed(self, kind: str, record_count: int, error: ReportError) -> None:
        with self._lock:
            self._failed_batches += 1
            self._failed_records += record_count
        logger.error(
            "Telemetry batch abandoned",
            kind=kind,
            record_count=record_count,
            error_type=type(error).__name__,
            error=str(error),
        )
        try:
            self._pm.hook.nrtrace_delivery_failed(kind=kind, record_count=record_count, error=error)
        except Exception as e:
            logger.warning("nrtrace_delivery_failed hook failed", error=str(e))

    @property
    def dropped_total(self) -> int:
        with self._lock:
            return self._dropped_total

    @property
    def metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "records_dropped": self._dropped_total,
                "dropped_by_reason": dict(self._dropped_by_reason),
                "failed_batches": self._failed_batches,
                "failed_records": self._failed_records,
            }
