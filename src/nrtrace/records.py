# src/nrtrace/records.py
"""Immutable records handed from the capture layer to the reporter.

Span and Log are frozen once created. A Span only exists after its source
span has closed, so its duration is always known. Ownership moves to the
batching buffer as soon as a record is produced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TypeAlias

from nrtrace.attributes import Attributes


class Level(StrEnum):
    """Level taxonomy used by the instrumentation front-end."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class Severity(StrEnum):
    """Log severities written to the vendor's `level` field."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


# Severity for any level we do not recognise.
DEFAULT_SEVERITY = Severity.INFO

_BY_NAME: dict[str, Severity] = {
    "trace": Severity.TRACE,
    "debug": Severity.DEBUG,
    "info": Severity.INFO,
    "warn": Severity.WARN,
    "warning": Severity.WARN,
    "error": Severity.ERROR,
    "critical": Severity.ERROR,
    "fatal": Severity.ERROR,
}


def severity_for(level: Level | str | int | None) -> Severity:
    """Map an instrumentation level to a vendor severity.

    Total over its input: Level members, level names (case-insensitive) and
    stdlib logging integers all map to exactly one Severity, and anything
    else maps to DEFAULT_SEVERITY.

    Example:
        >>> severity_for(Level.WARN)
        <Severity.WARN: 'WARN'>
        >>> severity_for(logging.CRITICAL)
        <Severity.ERROR: 'ERROR'>
        >>> severity_for("verbose")
        <Severity.INFO: 'INFO'>
    """
    # bool is an int subclass but never a meaningful level
    if isinstance(level, bool) or level is None:
        return DEFAULT_SEVERITY
    if isinstance(level, int):
        if level >= logging.ERROR:
            return Severity.ERROR
        if level >= logging.WARNING:
            return Severity.WARN
        if level >= logging.INFO:
            return Severity.INFO
        if level >= logging.DEBUG:
            return Severity.DEBUG
        # NOTSET is "unset", not "most verbose"
        return Severity.TRACE if level > logging.NOTSET else DEFAULT_SEVERITY
    if isinstance(level, str):
        return _BY_NAME.get(level.strip().lower(), DEFAULT_SEVERITY)
    return DEFAULT_SEVERITY


@dataclass(frozen=True, slots=True)
class SpanIdentity:
    """Vendor identifiers of a span, looked up by opaque id."""

    trace_id: str
    span_id: str


@dataclass(frozen=True, slots=True)
class Span:
    """A closed unit of work.

    Times are epoch microseconds; duration is end - start, never negative.
    """

    trace_id: str
    span_id: str
    parent_span_id: str | None
    name: str
    start_time: int
    duration: int
    attributes: Attributes = field(default_factory=Attributes)

    @property
    def is_root(self) -> bool:
        return self.parent_span_id is None


@dataclass(frozen=True, slots=True)
class Log:
    """A point-in-time event, optionally linked to its enclosing span."""

    timestamp: int
    message: str
    severity: Severity
    attributes: Attributes = field(default_factory=Attributes)
    trace_id: str | None = None
    span_id: str | None = None


Record: TypeAlias = Span | Log
Batch: TypeAlias = tuple[Record, ...]
