# src/nrtrace/hookspecs.py
"""pluggy hook specifications for nrtrace.

Two kinds of hooks:
- Observability: the host process learns about dropped records and
  abandoned deliveries. Hooks receive counts only, never payloads, so a
  hook that logs cannot feed the telemetry it is reporting on.
- Discovery: reporter plugins register reporter classes by name.

Usage (implementing an observability plugin):
    from nrtrace.hookspecs import hookimpl

    class DropCounter:
        def __init__(self):
            self.dropped = 0

        @hookimpl
        def nrtrace_records_dropped(self, reason, count, dropped_total):
            self.dropped = dropped_total
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from nrtrace.errors import ReportError
    from nrtrace.reporter.protocols import Reporter

PROJECT_NAME = "nrtrace"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class NrTraceSpec:
    """Hook specifications for nrtrace plugins."""

    @hookspec
    def nrtrace_records_dropped(self, reason: str, count: int, dropped_total: int) -> None:
        """Records were dropped before delivery.

        Args:
            reason: "buffer_full", "serialization", "shutdown" or "closed"
            count: Records dropped by this occurrence
            dropped_total: Running total across all reasons
        """

    @hookspec
    def nrtrace_delivery_failed(self, kind: str, record_count: int, error: "ReportError") -> None:
        """A batch was abandoned after retries were exhausted or refused.

        Called once per abandoned batch.

        Args:
            kind: "spans", "logs" or "mixed"
            record_count: Number of records in the batch that were not delivered
            error: Terminal error (never contains the payload)
        """

    @hookspec
    def nrtrace_get_reporters(self) -> list[type["Reporter"]]:  # type: ignore[empty-body]
        """Return reporter classes.

        Each class must expose a class-level `name` and a
        `from_settings(settings)` constructor.
        """
