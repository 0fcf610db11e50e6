# src/nrtrace/reporter/__init__.py
"""Reporters: drain the batch buffer and ship batches to the vendor.

Available reporters:
- BlockingReporter: dedicated worker thread, blocking httpx client
- AsyncReporter: asyncio task, httpx.AsyncClient
- NoopReporter: logs batch summaries, sends nothing

Plugin registration:
    Reporters are registered via the nrtrace_get_reporters hook.
    BuiltinReportersPlugin registers the three built-ins.
"""

from nrtrace.hookspecs import hookimpl
from nrtrace.reporter.aio import AsyncReporter
from nrtrace.reporter.blocking import BlockingReporter
from nrtrace.reporter.core import Endpoint, Payload, ReportCore, classify_status
from nrtrace.reporter.noop import NoopReporter
from nrtrace.reporter.protocols import AsyncTransport, Reporter, Transport
from nrtrace.reporter.transport import AsyncHttpTransport, HttpTransport


class BuiltinReportersPlugin:
    """Plugin that registers built-in reporters."""

    @hookimpl
    def nrtrace_get_reporters(self) -> list[type]:
        return [BlockingReporter, AsyncReporter, NoopReporter]


__all__ = [
    "AsyncHttpTransport",
    "AsyncReporter",
    "AsyncTransport",
    "BlockingReporter",
    "BuiltinReportersPlugin",
    "Endpoint",
    "HttpTransport",
    "NoopReporter",
    "Payload",
    "ReportCore",
    "Reporter",
    "Transport",
    "classify_status",
]
