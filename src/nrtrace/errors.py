# src/nrtrace/errors.py
"""Exceptions raised by the capture and delivery pipeline.

Only ConfigurationError is meant to reach the host program, and only at
startup. Everything else is raised and handled below the capture layer
boundary: the layer and the reporter worker loops absorb these, count them,
and report them through the observability hooks.
"""

from __future__ import annotations


class NrTraceError(Exception):
    """Base class for all nrtrace errors."""


class ConfigurationError(NrTraceError):
    """Raised when the bridge cannot be constructed from its configuration.

    This is the startup-time failure path (invalid API key format, unknown
    reporter name, invalid numeric settings). It is never raised once the
    layer is running.

    Attributes:
        component: Name of the component that rejected the configuration
        message: Human-readable error description
    """

    def __init__(self, component: str, message: str) -> None:
        self.component = component
        self.message = message
        super().__init__(f"{component}: {message}")


class BufferFull(NrTraceError):
    """Raised by BatchBuffer.push() when the buffer is at capacity."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Batch buffer is full (capacity={capacity})")


class SerializationError(NrTraceError):
    """A single record could not be encoded into the wire format.

    The offending record is dropped; the rest of its batch is still sent.
    """

    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"Cannot serialize {kind} record: {reason}")


class ReportError(NrTraceError):
    """Base class for delivery failures."""


class TransportError(ReportError):
    """Network failure or retryable server status.

    Attributes:
        status: HTTP status code when the server answered, None for
            connection-level failures
        retry_after: Seconds the server asked us to wait (429 Retry-After)
    """

    def __init__(self, message: str, *, status: int | None = None, retry_after: float | None = None) -> None:
        self.status = status
        self.retry_after = retry_after
        super().__init__(message)


class Timeout(ReportError):
    """A single transmission attempt exceeded request_timeout."""


class RejectedByServer(ReportError):
    """Non-retryable status (authentication, malformed request, ...)."""

    def __init__(self, status: int, message: str | None = None) -> None:
        self.status = status
        super().__init__(message or f"Request rejected with HTTP {status}")


class PayloadTooLarge(RejectedByServer):
    """HTTP 413: the payload must be split before it can be accepted."""

    def __init__(self) -> None:
        super().__init__(413, "Payload too large")


class DeliveryFailed(ReportError):
    """A batch (or part of it) was abandoned.

    Attributes:
        record_count: Number of records that were not delivered
        errors: Terminal error for each abandoned payload, in send order
    """

    def __init__(self, record_count: int, errors: list[ReportError]) -> None:
        self.record_count = record_count
        self.errors = errors
        last = errors[-1] if errors else None
        super().__init__(f"Delivery of {record_count} record(s) abandoned: {last}")

    @property
    def last_error(self) -> ReportError | None:
        return self.errors[-1] if self.errors else None
