# src/nrtrace/cli.py
"""nrtrace Command Line Interface.

Entry point for the nrtrace CLI tool.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError

from nrtrace import __version__
from nrtrace.config import BridgeSettings, load_settings
from nrtrace.errors import ConfigurationError
from nrtrace.factory import create_layer
from nrtrace.instrument import Tracer
from nrtrace.layer import NewRelicLayer
from nrtrace.logging import configure_logging

__all__ = ["app"]

app = typer.Typer(
    name="nrtrace",
    help="nrtrace: ship spans and logs to New Relic.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"nrtrace version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """nrtrace: ship spans and logs to New Relic."""


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
) -> None:
    """Display a formatted error panel on stderr."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    content = Text()
    content.append(message, style="white")
    if hint:
        content.append("\n\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    Console(stderr=True).print(Panel(content, title=f"[red bold]{title}[/]", border_style="red", expand=False))


def _load_or_exit(settings: str) -> BridgeSettings:
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}: {getattr(e, 'problem', e)}",
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ConfigurationError as e:
        _format_validation_error(
            title="Configuration Validation Failed",
            message=str(e),
            hint="Set the API key with NRTRACE_API__KEY or api.key in the settings file.",
        )
        raise typer.Exit(1) from None


@app.command()
def validate(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Validate bridge configuration without sending anything."""
    config = _load_or_exit(settings)
    typer.echo("Configuration valid.")
    typer.echo(f"  reporter:   {config.reporter}")
    typer.echo(f"  trace url:  {config.api.trace_url}")
    typer.echo(f"  log url:    {config.api.log_url}")
    typer.echo(f"  batch size: {config.batch_size} (buffer {config.buffer_capacity})")


def _fibonacci_demo(tracer: Tracer, n: int, step: float) -> int:
    @tracer.instrument(name="fibonacci()")
    def fibonacci(n: int) -> int:
        tracer.record(n=n)
        tracer.event("info", f"sleep {step * n * 1000:.0f}ms", n=n)
        time.sleep(step * n)
        if n < 2:
            return 1
        return fibonacci(n - 1) + fibonacci(n - 2)

    with tracer.span(f"calculating fibonacci({n})"):
        return fibonacci(n)


async def _fibonacci_demo_async(tracer: Tracer, n: int, step: float) -> int:
    @tracer.instrument(name="fibonacci()")
    async def fibonacci(n: int) -> int:
        tracer.record(n=n)
        tracer.event("info", f"sleep {step * n * 1000:.0f}ms", n=n)
        await asyncio.sleep(step * n)
        if n < 2:
            return 1
        return await fibonacci(n - 1) + await fibonacci(n - 2)

    with tracer.span(f"calculating fibonacci({n})"):
        return await fibonacci(n)


def _report(layer: NewRelicLayer, result: int, n: int) -> None:
    typer.echo(f"fibonacci({n}) = {result}")
    metrics = layer.health_metrics
    typer.echo(
        f"records dropped: {metrics['records_dropped']}, "
        f"failed batches: {metrics['failed_batches']}, "
        f"failed records: {metrics['failed_records']}"
    )


@app.command()
def demo(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    reporter: str | None = typer.Option(
        None,
        "--reporter",
        "-r",
        help="Override the configured reporter (blocking, async, noop).",
    ),
    n: int = typer.Option(3, "--n", min=0, max=20, help="Fibonacci argument."),
    step_ms: int = typer.Option(100, "--step-ms", min=0, help="Sleep per unit of n, in milliseconds."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit nrtrace's own logs as JSON."),
) -> None:
    """Send a nested fibonacci trace and flush on exit."""
    configure_logging(json_output=json_logs)
    config = _load_or_exit(settings)
    overrides: dict[str, str] = {}
    if reporter is not None:
        # Unknown names are rejected by create_layer()
        overrides["reporter"] = reporter.strip().lower()
    if config.service_name is None:
        overrides["service_name"] = "fibonacci"
    config = config.model_copy(update=overrides)
    step = step_ms / 1000

    if config.reporter == "async":

        async def run() -> None:
            layer = _create_or_exit(config)
            async with layer:
                result = await _fibonacci_demo_async(Tracer(layer), n, step)
            _report(layer, result, n)

        asyncio.run(run())
        return

    layer = _create_or_exit(config)
    with layer:
        result = _fibonacci_demo(Tracer(layer), n, step)
    _report(layer, result, n)


def _create_or_exit(config: BridgeSettings) -> NewRelicLayer:
    try:
        return create_layer(config)
    except ConfigurationError as e:
        _format_validation_error(title="Invalid Reporter", message=str(e))
        raise typer.Exit(1) from None


if __name__ == "__main__":
    app()
