# src/nrtrace/factory.py
"""Factory functions for creating a NewRelicLayer from configuration.

This module provides the glue between BridgeSettings and a running layer.
It handles:
1. Discovering reporter classes via the nrtrace_get_reporters pluggy hook
2. Building the configured reporter with from_settings()
3. Creating the NewRelicLayer, which starts the reporter

Usage:
    from nrtrace.config import load_settings
    from nrtrace.factory import create_layer

    settings = load_settings(Path("nrtrace.yaml"))
    layer = create_layer(settings)
    ...
    layer.shutdown()
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import pluggy
import structlog

from nrtrace.config import BridgeSettings
from nrtrace.errors import ConfigurationError
from nrtrace.hookspecs import PROJECT_NAME, NrTraceSpec
from nrtrace.layer import NewRelicLayer
from nrtrace.reporter import BuiltinReportersPlugin
from nrtrace.reporter.protocols import ReporterFactory

logger = structlog.get_logger(__name__)


def _resolve_reporter_name(reporter_class: type[ReporterFactory]) -> str:
    """Read the class-level `name` a reporter registers under.

    Raises:
        ConfigurationError: If the class does not declare a non-empty name.
    """
    class_name = getattr(reporter_class, "__name__", repr(reporter_class))
    name = getattr(reporter_class, "name", None)
    if type(name) is not str or name == "":
        raise ConfigurationError(
            "reporter_plugins",
            f"Reporter class {class_name} must declare a non-empty string `name`, got {name!r}",
        )
    if not callable(getattr(reporter_class, "from_settings", None)):
        raise ConfigurationError(
            "reporter_plugins",
            f"Reporter class {class_name} has no from_settings(settings) constructor",
        )
    return name


def discover_reporters(reporter_plugins: Iterable[Any] = ()) -> dict[str, type[ReporterFactory]]:
    """Discover reporters via pluggy hooks.

    Registers the built-in reporters plus any additional plugin objects
    provided by the caller, then calls ``nrtrace_get_reporters`` hooks to
    build the name->class registry.

    Raises:
        ConfigurationError: If plugin registration fails, a hook misbehaves,
            or two reporters share a name.
    """
    plugin_manager = pluggy.PluginManager(PROJECT_NAME)
    plugin_manager.add_hookspecs(NrTraceSpec)

    for plugin in [BuiltinReportersPlugin(), *reporter_plugins]:
        try:
            plugin_manager.register(plugin)
            plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            # PluginValidationError: hookimpl signature mismatch
            # ValueError: plugin object already registered
            if isinstance(e, pluggy.PluginValidationError):
                plugin_manager.unregister(plugin=plugin)
            raise ConfigurationError(
                "reporter_plugins",
                f"Invalid reporter plugin {type(plugin).__name__}: {e}",
            ) from e

    registry: dict[str, type[ReporterFactory]] = {}
    for hook_impl in plugin_manager.hook.nrtrace_get_reporters.get_hookimpls():
        plugin_name = type(hook_impl.plugin).__name__
        try:
            reporters = hook_impl.function()
        except Exception as e:
            raise ConfigurationError(
                "reporter_plugins",
                f"Reporter plugin {plugin_name} failed in nrtrace_get_reporters: {e}",
            ) from e
        try:
            if type(reporters) in (str, bytes):
                raise TypeError(type(reporters).__name__)
            reporter_iter = iter(reporters)
        except TypeError as e:
            raise ConfigurationError(
                "reporter_plugins",
                f"nrtrace_get_reporters in plugin {plugin_name} returned {type(reporters).__name__}; "
                "expected iterable of reporter classes",
            ) from e

        for reporter_class in reporter_iter:
            reporter_name = _resolve_reporter_name(reporter_class)
            if reporter_name in registry:
                raise ConfigurationError(
                    reporter_name,
                    f"Duplicate reporter name '{reporter_name}' discovered: "
                    f"{registry[reporter_name].__name__} and {reporter_class.__name__}",
                )
            registry[reporter_name] = reporter_class

    return registry


def create_layer(
    settings: BridgeSettings,
    *,
    hooks: Iterable[Any] = (),
    reporter_plugins: Iterable[Any] = (),
    **layer_kwargs: Any,
) -> NewRelicLayer:
    """Create a started NewRelicLayer for settings.reporter.

    Args:
        settings: Validated bridge settings.
        hooks: Observability plugins implementing nrtrace hookspecs.
        reporter_plugins: Extra plugin objects providing
            ``nrtrace_get_reporters`` hooks.
        **layer_kwargs: Passed through to NewRelicLayer (id_generator,
            clock, context).

    Raises:
        ConfigurationError: If discovery fails or settings.reporter names
            no discovered reporter.
    """
    registry = discover_reporters(reporter_plugins)
    try:
        reporter_class = registry[settings.reporter]
    except KeyError:
        available = sorted(registry)
        raise ConfigurationError(
            settings.reporter,
            f"Unknown reporter. Available reporters: {available}",
        ) from None

    reporter = reporter_class.from_settings(settings)
    logger.debug(
        "reporter_configured",
        reporter=settings.reporter,
        trace_url=settings.api.trace_url,
        log_url=settings.api.log_url,
    )
    return NewRelicLayer(reporter, settings, hooks=hooks, **layer_kwargs)
