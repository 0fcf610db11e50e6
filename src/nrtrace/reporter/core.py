# src/nrtrace/reporter/core.py
"""Batch -> payload pipeline shared by every reporter.

Steps shared between the blocking and asynchronous reporters:
1. Partition a drained batch into spans and logs (separate endpoints)
2. Serialize each record into the vendor shape, dropping records that
   cannot be encoded without sinking the rest of the batch
3. Wrap the records in the {"common": ..., "spans"|"logs": [...]} envelope
   and gzip it
4. Classify HTTP outcomes and build the tenacity retry policy used around
   each transport attempt
5. Track one batch through delivery (Delivery): a single deadline for all
   of its payloads, 413 splitting, and the records abandoned

Reporters only differ in how a transport attempt blocks or suspends.

Wire format (New Relic Trace API / Log API):
    [{"common": {"attributes": {...}},
      "spans": [{"id": ..., "trace.id": ..., "timestamp": <ms>,
                 "attributes": {"name": ..., "duration.ms": ..., "parent.id": ...}}]}]

    [{"common": {"attributes": {...}},
      "logs": [{"timestamp": <ms>, "message": ..., "level": ...,
                "attributes": {"trace.id": ..., "span.id": ...}}]}]
"""

from __future__ import annotations

import gzip
import json
import time
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog
from tenacity import (
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from nrtrace.config import BridgeSettings
from nrtrace.errors import (
    DeliveryFailed,
    PayloadTooLarge,
    RejectedByServer,
    ReportError,
    SerializationError,
    Timeout,
    TransportError,
)
from nrtrace.hooks import Observability
from nrtrace.records import Batch, Log, Span

logger = structlog.get_logger(__name__)

Kind = Literal["spans", "logs"]

# Statuses the vendor documents as "do not retry"
_REJECTED_STATUSES = frozenset({400, 401, 403, 404, 405, 409, 410, 411})


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Ingest URL plus the headers specific to that API."""

    kind: Kind
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Payload:
    """Encoded records for one endpoint, in drain order.

    fragments holds each record's JSON text so a payload can be split on a
    413 response without re-serializing.
    """

    endpoint: Endpoint
    fragments: tuple[str, ...]
    body: bytes

    @property
    def kind(self) -> Kind:
        return self.endpoint.kind

    def __len__(self) -> int:
        return len(self.fragments)


def _to_millis(micros: int) -> int:
    return micros // 1_000


def serialize_span(span: Span) -> dict[str, Any]:
    """Vendor span object.

    A recorded `name` attribute replaces the span name. `duration.ms` and
    `parent.id` are computed at close and always replace recorded values.
    """
    attributes: dict[str, Any] = {"name": span.name}
    attributes.update(span.attributes.to_dict())
    attributes["duration.ms"] = span.duration / 1_000
    if span.parent_span_id is not None:
        attributes["parent.id"] = span.parent_span_id
    return {
        "id": span.span_id,
        "trace.id": span.trace_id,
        "timestamp": _to_millis(span.start_time),
        "attributes": attributes,
    }


def serialize_log(log: Log) -> dict[str, Any]:
    attributes: dict[str, Any] = log.attributes.to_dict()
    # Linking metadata used by the vendor UI to join logs with traces
    if log.trace_id is not None:
        attributes["trace.id"] = log.trace_id
    if log.span_id is not None:
        attributes["span.id"] = log.span_id
    return {
        "timestamp": _to_millis(log.timestamp),
        "message": log.message,
        "level": log.severity.value,
        "attributes": attributes,
    }


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), allow_nan=False)


def encode_fragment(kind: Kind, record: Span | Log) -> str:
    """Serialize one record to JSON text.

    Raises:
        SerializationError: The record holds a value JSON cannot carry
            (NaN/Infinity, non-string nested keys, ...).
    """
    entry = serialize_span(record) if isinstance(record, Span) else serialize_log(record)
    try:
        return _dumps(entry)
    except (TypeError, ValueError) as e:
        raise SerializationError(kind, str(e)) from e


def classify_status(status: int, headers: Mapping[str, str]) -> ReportError | None:
    """Map an HTTP response status to None (delivered) or the error to raise."""
    if 200 <= status < 300:
        return None
    if status == 413:
        return PayloadTooLarge()
    if status == 429:
        return TransportError("Request rate quota exceeded", status=429, retry_after=_parse_retry_after(headers))
    if status in _REJECTED_STATUSES:
        return RejectedByServer(status)
    return TransportError(f"Server responded with HTTP {status}", status=status)


def _parse_retry_after(headers: Mapping[str, str]) -> float | None:
    value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class wait_retry_after(wait_base):
    """Backoff that never undercuts a server-provided Retry-After."""

    def __init__(self, fallback: wait_base) -> None:
        self._fallback = fallback

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._fallback(retry_state)
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        if isinstance(error, TransportError) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return delay


class stop_at_deadline(stop_base):
    """Stop once the next sleep would end past an absolute monotonic deadline."""

    def __init__(self, deadline: float) -> None:
        self._deadline = deadline

    def __call__(self, retry_state: RetryCallState) -> bool:
        upcoming = retry_state.upcoming_sleep or 0.0
        return time.monotonic() + upcoming >= self._deadline


class ReportCore:
    """Shared batching/serialization/retry logic for reporters.

    Example:
        core = ReportCore.from_settings(settings)
        delivery = core.delivery(batch)
        for payload in delivery:
            ...  # transmit with core.retry_arguments(payload.kind, deadline=delivery.deadline)
    """

    def __init__(
        self,
        *,
        trace_url: str,
        log_url: str,
        common_attributes: Mapping[str, Any] | None = None,
        max_retries: int = 5,
        retry_backoff: float = 1.0,
        max_backoff: float = 30.0,
        request_timeout: float = 10.0,
        max_elapsed: float = 60.0,
    ) -> None:
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self.trace_endpoint = Endpoint(
            kind="spans",
            url=trace_url,
            headers={"Data-Format": "newrelic", "Data-Format-Version": "1"},
        )
        self.log_endpoint = Endpoint(kind="logs", url=log_url)
        self._common = {"attributes": dict(common_attributes or {})}
        # Validated once so a bad common attribute fails at startup, not per batch
        self._common_json = _dumps(self._common)
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.max_backoff = max_backoff
        self.request_timeout = request_timeout
        self.max_elapsed = max_elapsed
        self._observability = Observability()

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> ReportCore:
        return cls(
            trace_url=settings.api.trace_url,
            log_url=settings.api.log_url,
            common_attributes=settings.common_attributes(),
            max_retries=settings.max_retries,
            retry_backoff=settings.retry_backoff,
            max_backoff=settings.max_backoff,
            request_timeout=settings.request_timeout,
            max_elapsed=settings.max_elapsed,
        )

    @property
    def observability(self) -> Observability:
        return self._observability

    def bind(self, observability: Observability) -> None:
        """Route drop/failure reports to the layer's observability relay."""
        self._observability = observability

    # -- steps 1-3 -----------------------------------------------------------

    @staticmethod
    def partition(batch: Batch) -> tuple[list[Span], list[Log]]:
        spans: list[Span] = []
        logs: list[Log] = []
        for record in batch:
            if isinstance(record, Span):
                spans.append(record)
            else:
                logs.append(record)
        return spans, logs

    def encode(self, kind: Kind, fragments: tuple[str, ...]) -> bytes:
        """Build the gzip-compressed body for already-serialized records."""
        text = f'[{{"common":{self._common_json},"{kind}":[{",".join(fragments)}]}}]'
        return gzip.compress(text.encode("utf-8"), compresslevel=1, mtime=0)

    def _payload(self, endpoint: Endpoint, fragments: tuple[str, ...]) -> Payload:
        return Payload(endpoint=endpoint, fragments=fragments, body=self.encode(endpoint.kind, fragments))

    def prepare(self, batch: Batch) -> list[Payload]:
        """Turn a drained batch into at most one payload per endpoint.

        Records that fail to serialize are dropped and reported; they never
        take the rest of the batch down with them.
        """
        payloads: list[Payload] = []
        spans, logs = self.partition(batch)
        for endpoint, records in ((self.trace_endpoint, spans), (self.log_endpoint, logs)):
            fragments: list[str] = []
            for record in records:
                try:
                    fragments.append(encode_fragment(endpoint.kind, record))
                except SerializationError as e:
                    logger.warning("Dropping record that cannot be serialized", kind=e.kind, reason=e.reason)
                    self._observability.records_dropped("serialization")
            if fragments:
                payloads.append(self._payload(endpoint, tuple(fragments)))
        return payloads

    def split(self, payload: Payload) -> tuple[Payload, Payload]:
        """Halve a payload the server refused as too large, keeping order."""
        if len(payload) < 2:
            raise ValueError("cannot split a payload with fewer than 2 records")
        middle = len(payload) // 2
        return (
            self._payload(payload.endpoint, payload.fragments[:middle]),
            self._payload(payload.endpoint, payload.fragments[middle:]),
        )

    # -- step 4 --------------------------------------------------------------

    def batch_deadline(self, deadline: float | None = None) -> float:
        """Monotonic deadline for one batch: max_elapsed from now, or earlier."""
        budget = time.monotonic() + self.max_elapsed
        return budget if deadline is None else min(budget, deadline)

    def attempt_timeout(self, deadline: float) -> float:
        """Cap for a single transport attempt: request_timeout or what is left."""
        return max(0.0, min(self.request_timeout, deadline - time.monotonic()))

    def retry_arguments(self, kind: Kind, *, deadline: float | None = None) -> dict[str, Any]:
        """Keyword arguments for tenacity Retrying / AsyncRetrying.

        Stops after max_retries attempts, or before a sleep would end past
        the deadline (max_elapsed from now when none is given). Only
        TransportError and Timeout are retried.
        """
        if deadline is None:
            deadline = self.batch_deadline()
        return {
            "stop": stop_after_attempt(self.max_retries) | stop_at_deadline(deadline),
            "wait": wait_retry_after(
                wait_exponential_jitter(
                    multiplier=self.retry_backoff,
                    max=self.max_backoff,
                    jitter=self.retry_backoff,
                )
            ),
            "retry": retry_if_exception_type((TransportError, Timeout)),
            "before_sleep": _log_retry(kind),
            "reraise": False,
        }

    def delivery(self, batch: Batch, *, deadline: float | None = None) -> Delivery:
        """Start delivering a batch; every payload shares one deadline."""
        return Delivery(self, self.prepare(batch), self.batch_deadline(deadline))

    def record_failure(self, batch: Batch, error: Exception) -> None:
        """Report a batch that send() could not fully deliver."""
        if not isinstance(error, DeliveryFailed):
            logger.error("Unexpected error delivering batch", error=str(error), error_type=type(error).__name__)
            error = DeliveryFailed(len(batch), [TransportError(f"{type(error).__name__}: {error}")])
        self.report_failure(batch, error.record_count, error)

    def report_failure(self, batch: Batch, record_count: int, error: ReportError) -> None:
        spans, logs = self.partition(batch)
        if spans and logs:
            kind = "mixed"
        else:
            kind = "spans" if spans else "logs"
        self._observability.delivery_failed(kind=kind, record_count=record_count, error=error)


class Delivery:
    """Payloads of one batch still to send, and the records abandoned so far.

    Iteration yields payloads in drain order. A payload refused with 413 is
    split and its halves are yielded next. Once the deadline passes, the
    remaining payloads are abandoned without an attempt.

    Example:
        delivery = core.delivery(batch)
        for payload in delivery:
            try:
                transmit_with_retry(payload, delivery.deadline)
            except Exception as e:
                delivery.abandon(payload, e)
        delivery.finish()
    """

    def __init__(self, core: ReportCore, payloads: list[Payload], deadline: float) -> None:
        self._core = core
        self._pending: deque[Payload] = deque(payloads)
        self.deadline = deadline
        self.failed = 0
        self.errors: list[ReportError] = []

    def __iter__(self) -> Iterator[Payload]:
        while self._pending:
            payload = self._pending.popleft()
            if time.monotonic() >= self.deadline:
                self._fail(payload, Timeout(f"{payload.kind} delivery ran out of time for this batch"))
                continue
            yield payload

    def abandon(self, payload: Payload, error: Exception) -> None:
        """Record the outcome of a payload whose retries ended in error."""
        if isinstance(error, RetryError):
            last = error.last_attempt.exception()
            if isinstance(last, Exception):
                error = last
        if isinstance(error, PayloadTooLarge) and len(payload) > 1:
            self._pending.extendleft(reversed(self._core.split(payload)))
            return
        if not isinstance(error, ReportError):
            # Transport bug, not a classified failure; still abandon, never raise raw
            error = TransportError(f"{type(error).__name__}: {error}")
        self._fail(payload, error)

    def _fail(self, payload: Payload, error: ReportError) -> None:
        self.failed += len(payload)
        self.errors.append(error)

    def finish(self) -> None:
        """Raise DeliveryFailed if any payload was abandoned.

        Records that failed serialization are not counted here; they were
        already reported as drops.
        """
        if self.errors:
            raise DeliveryFailed(self.failed, self.errors)


def _log_retry(kind: Kind) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        logger.warning(
            "Telemetry delivery attempt failed, retrying",
            kind=kind,
            attempt=retry_state.attempt_number,
            sleep_seconds=round(retry_state.upcoming_sleep, 3),
            error_type=type(error).__name__,
            error=str(error),
        )

    return before_sleep
