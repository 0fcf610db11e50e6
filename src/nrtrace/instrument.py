# src/nrtrace/instrument.py
"""Instrumentation front-end for NewRelicLayer.

Tracer owns span identity and nesting: it mints opaque handles and keeps the
active-span stack in a ContextVar, so each thread and each asyncio task sees
its own stack. LoggingBridgeHandler forwards stdlib log records as events on
the active span.

Usage:
    tracer = Tracer(layer)

    @tracer.instrument(name="fibonacci()")
    def fibonacci(n: int) -> int:
        tracer.event("info", f"sleep {100 * n}ms", n=n)
        ...

    with tracer.span("calculating fibonacci(3)", service_name="fibonacci"):
        fibonacci(3)
"""

from __future__ import annotations

import functools
import inspect
import itertools
import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, TypeVar

from nrtrace.layer import NewRelicLayer
from nrtrace.logging import is_self_logger
from nrtrace.records import Level

F = TypeVar("F", bound=Callable[..., Any])


def _caller_source(depth: int) -> str | None:
    try:
        frame = sys._getframe(depth + 1)
    except ValueError:
        return None
    return f"{frame.f_code.co_filename}:{frame.f_lineno}"


class Tracer:
    """Front-end that drives a NewRelicLayer and tracks the active span.

    Construction attaches the tracer to the layer as its SpanContextProvider,
    so layer.record_current()/event_current() resolve through it.
    """

    def __init__(self, layer: NewRelicLayer) -> None:
        self._layer = layer
        self._ids = itertools.count(1)
        self._stack: ContextVar[tuple[int, ...]] = ContextVar(f"nrtrace_active_spans_{id(self):x}", default=())
        layer.set_context(self)

    @property
    def layer(self) -> NewRelicLayer:
        return self._layer

    def current_span_id(self) -> int | None:
        stack = self._stack.get()
        return stack[-1] if stack else None

    @contextmanager
    def span(self, name: str, /, **attrs: object) -> Iterator[int]:
        """Open a child of the active span for the duration of the block.

        An exception leaving the block is recorded as error.class and
        error.message on the span, then re-raised.
        """
        handle = next(self._ids)
        self._layer.on_span_create(handle, self.current_span_id(), name, attrs)
        token = self._stack.set((*self._stack.get(), handle))
        try:
            yield handle
        except Exception as e:
            self._layer.on_span_record(handle, {"error.class": type(e).__name__, "error.message": str(e)})
            raise
        finally:
            self._stack.reset(token)
            self._layer.on_span_close(handle)

    def record(self, **attrs: object) -> bool:
        """Merge attributes into the active span. False if there is none."""
        return self._layer.record_current(attrs)

    def event(self, level: Level | str | int, message: str, /, **attrs: object) -> None:
        """Emit an event on the active span, tagged with the caller's source."""
        source = _caller_source(1)
        if source is not None and "source" not in attrs:
            attrs["source"] = source
        self._layer.event_current(level, message, attrs)

    def instrument(self, name: str | None = None, **attrs: object) -> Callable[[F], F]:
        """Decorator wrapping each call of a sync or async function in a span.

        The span is named `name` (default `qualname()`) and carries a
        `source` attribute pointing at the function definition.
        """

        def decorator(func: F) -> F:
            span_name = name if name is not None else f"{func.__qualname__}()"
            code = func.__code__
            span_attrs = {"source": f"{code.co_filename}:{code.co_firstlineno}", **attrs}

            if inspect.iscoroutinefunction(func):

                @functools.wraps(func)
                async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                    with self.span(span_name, **span_attrs):
                        return await func(*args, **kwargs)

                return async_wrapper  # type: ignore[return-value]

            @functools.wraps(func)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                with self.span(span_name, **span_attrs):
                    return func(*args, **kwargs)

            return wrapper  # type: ignore[return-value]

        return decorator


class LoggingBridgeHandler(logging.Handler):
    """stdlib logging handler that turns log records into span events.

    Records from nrtrace's own delivery path (see nrtrace.logging.SELF_LOGGERS)
    are ignored, otherwise every send would produce more telemetry.

    Example:
        logging.getLogger().addHandler(LoggingBridgeHandler(layer))
    """

    def __init__(self, layer: NewRelicLayer, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._layer = layer

    def emit(self, record: logging.LogRecord) -> None:
        if is_self_logger(record.name):
            return
        try:
            attrs: dict[str, object] = {
                "logger.name": record.name,
                "source": f"{record.pathname}:{record.lineno}",
            }
            if record.exc_info and record.exc_info[0] is not None:
                attrs["error.class"] = record.exc_info[0].__name__
            self._layer.event_current(record.levelno, record.getMessage(), attrs)
        except Exception:
            self.handleError(record)
