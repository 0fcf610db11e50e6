# src/nrtrace/reporter/protocols.py
"""Protocol definitions for reporters and their transports.

The transport is the only capability that differs between the blocking and
the asynchronous reporter: batching, serialization, compression, status
classification and the retry policy all live in ReportCore.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from nrtrace.buffer import BatchBuffer
    from nrtrace.config import BridgeSettings
    from nrtrace.hooks import Observability
    from nrtrace.reporter.core import Endpoint


@runtime_checkable
class Transport(Protocol):
    """Blocking delivery of one compressed payload.

    Error handling:
        - returns normally on any 2xx response
        - raises TransportError / Timeout for retryable failures
        - raises RejectedByServer (or PayloadTooLarge) for refusals
        - raises Timeout once the whole attempt exceeds `timeout` seconds
          (the transport default when None), however slowly bytes arrive
    """

    def transmit(self, endpoint: "Endpoint", body: bytes, *, timeout: float | None = None) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class AsyncTransport(Protocol):
    """Same contract as Transport, suspending instead of blocking."""

    async def transmit(self, endpoint: "Endpoint", body: bytes) -> None: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class Reporter(Protocol):
    """Drains a BatchBuffer and delivers its batches.

    Lifecycle:
        1. Construction (from_settings or directly)
        2. start(buffer, observability): called once by the capture layer
        3. Operation: the reporter's own thread/task drains the buffer
        4. close(grace): one bounded final flush, then remaining records
           are discarded and counted

    Error handling:
        Nothing raised during operation escapes the reporter. close() must
        be idempotent.
    """

    name: str

    def start(self, buffer: "BatchBuffer", observability: "Observability") -> None: ...

    def close(self, grace: float | None = None) -> None: ...


class ReporterFactory(Protocol):
    """Class-level surface used by reporter discovery."""

    name: str

    @classmethod
    def from_settings(cls, settings: "BridgeSettings") -> Reporter: ...
