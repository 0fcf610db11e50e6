# src/nrtrace/logging.py
"""Diagnostics for the bridge itself.

nrtrace reports its own drops, retries and abandoned batches through
structlog. Those records describe the delivery path and are never captured
as telemetry: LoggingBridgeHandler asks is_self_logger() before forwarding
a stdlib record, so a failing send cannot feed a new log into the buffer it
is trying to empty.

configure_logging() is optional. Hosts that already configure structlog can
skip it; the CLI calls it so its output is readable (or JSON for log
shippers). Stdlib records from httpx and the host share the same renderer
through ProcessorFormatter.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Delivery path: the package itself and the HTTP client it sends with
SELF_LOGGERS: tuple[str, ...] = ("nrtrace", "httpx", "httpcore")

# Event keys whose value is an ingest credential
_SECRET_KEYS = frozenset({"api_key", "Api-Key", "license_key"})

# Name of the stderr handler configure_logging() owns on the root logger
_HANDLER_NAME = "nrtrace.diagnostics"


def is_self_logger(name: str) -> bool:
    """True if a logger name belongs to the delivery path."""
    return any(name == prefix or name.startswith(prefix + ".") for prefix in SELF_LOGGERS)


def _redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in _SECRET_KEYS.intersection(event_dict):
        value = str(event_dict[key])
        event_dict[key] = f"...{value[-4:]}" if len(value) > 8 else "***"
    return event_dict


def _drop_formatter_keys(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    # ProcessorFormatter bookkeeping, present on every record it formats
    event_dict.pop("_record")
    event_dict.pop("_from_structlog")
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        _redact_secrets,
    ]


def _formatter(json_output: bool) -> ProcessorFormatter:
    renderer: list[Any]
    if json_output:
        renderer = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=False)]
    return ProcessorFormatter(processors=[_drop_formatter_keys, *renderer], foreign_pre_chain=_pre_chain())


def configure_logging(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route structlog and stdlib records to stderr through one renderer.

    Calling it again swaps the renderer. Other root handlers, including a
    LoggingBridgeHandler, are left in place.

    Args:
        json_output: One JSON object per line instead of console text.
        level: Root level name (DEBUG, INFO, WARNING, ERROR).
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level!r}")

    structlog.configure(
        processors=[*_pre_chain(), ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Loggers bound before a reconfigure must pick up the new chain
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(_formatter(json_output))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)

    # Per-request connection chatter; at least WARNING
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("httpcore").setLevel(max(log_level, logging.WARNING))


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """structlog logger for `name`, optionally pre-bound with context."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name, **context)
    return logger
