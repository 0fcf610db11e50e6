"""nrtrace: span and log telemetry bridge to New Relic's ingest APIs.

Instrumentation notifications are captured into Span/Log records, batched,
and shipped by a blocking-thread or asyncio reporter.
"""

__version__ = "0.1.0"

from nrtrace.attributes import Attributes
from nrtrace.buffer import BatchBuffer
from nrtrace.config import ApiSettings, BridgeSettings, load_settings
from nrtrace.errors import (
    BufferFull,
    ConfigurationError,
    DeliveryFailed,
    NrTraceError,
    PayloadTooLarge,
    RejectedByServer,
    ReportError,
    SerializationError,
    Timeout,
    TransportError,
)
from nrtrace.factory import create_layer
from nrtrace.hookspecs import hookimpl
from nrtrace.instrument import LoggingBridgeHandler, Tracer
from nrtrace.layer import NewRelicLayer, SpanContextProvider
from nrtrace.records import Level, Log, Severity, Span
from nrtrace.reporter import AsyncReporter, BlockingReporter, NoopReporter

__all__ = [
    "ApiSettings",
    "AsyncReporter",
    "Attributes",
    "BatchBuffer",
    "BlockingReporter",
    "BridgeSettings",
    "BufferFull",
    "ConfigurationError",
    "DeliveryFailed",
    "Level",
    "Log",
    "LoggingBridgeHandler",
    "NewRelicLayer",
    "NoopReporter",
    "NrTraceError",
    "PayloadTooLarge",
    "RejectedByServer",
    "ReportError",
    "SerializationError",
    "Severity",
    "Span",
    "SpanContextProvider",
    "Timeout",
    "Tracer",
    "TransportError",
    "__version__",
    "create_layer",
    "hookimpl",
    "load_settings",
]
