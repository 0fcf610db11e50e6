# tests/test_cli.py
"""Tests for the nrtrace CLI."""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog
from typer.testing import CliRunner

from nrtrace import __version__
from nrtrace.cli import app
from tests.helpers.fakes import TEST_API_KEY

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    """demo configures logging globally; undo it after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def settings_file(tmp_path: Path) -> Path:
    path = tmp_path / "nrtrace.yaml"
    path.write_text(f"api:\n  key: {TEST_API_KEY}\nreporter: noop\nbatch_size: 10\n")
    return path


class TestVersion:
    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestValidate:
    def test_valid_settings(self, settings_file: Path) -> None:
        result = runner.invoke(app, ["validate", "--settings", str(settings_file)])
        assert result.exit_code == 0
        assert "Configuration valid" in result.output
        assert "https://trace-api.newrelic.com/trace/v1" in result.output
        assert TEST_API_KEY not in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["validate", "--settings", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1

    def test_invalid_key(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("api:\n  key: not a key\n")
        result = runner.invoke(app, ["validate", "--settings", str(path)])
        assert result.exit_code == 1


class TestDemo:
    def test_noop_demo_runs_fibonacci(self, settings_file: Path) -> None:
        result = runner.invoke(app, ["demo", "--settings", str(settings_file), "--step-ms", "0"])
        assert result.exit_code == 0, result.output
        assert "fibonacci(3) = 3" in result.output
        assert "records dropped: 0" in result.output

    def test_reporter_override(self, settings_file: Path) -> None:
        result = runner.invoke(
            app,
            ["demo", "--settings", str(settings_file), "--reporter", "noop", "--n", "1", "--step-ms", "0"],
        )
        assert result.exit_code == 0, result.output
        assert "fibonacci(1) = 1" in result.output

    def test_unknown_reporter_override(self, settings_file: Path) -> None:
        result = runner.invoke(app, ["demo", "--settings", str(settings_file), "--reporter", "smoke-signals"])
        assert result.exit_code == 1
