# tests/test_logging.py
"""Tests for structlog configuration and the self-logger guard."""

import logging
from collections.abc import Iterator

import pytest
import structlog
from structlog.stdlib import ProcessorFormatter

from nrtrace.instrument import LoggingBridgeHandler
from nrtrace.logging import configure_logging, get_logger, is_self_logger


@pytest.fixture
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestSelfLoggers:
    @pytest.mark.parametrize("name", ["nrtrace", "nrtrace.layer", "httpx", "httpcore.http11"])
    def test_pipeline_loggers(self, name: str) -> None:
        assert is_self_logger(name)

    @pytest.mark.parametrize("name", ["nrtracex", "app", "httpx_extras", ""])
    def test_other_loggers(self, name: str) -> None:
        assert not is_self_logger(name)


@pytest.mark.usefixtures("restore_logging")
class TestConfigureLogging:
    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="INFO")
        get_logger("nrtrace.tests").info("batch sent", records=3)
        err = capsys.readouterr().err
        assert '"event": "batch sent"' in err
        assert '"records": 3' in err

    def test_reconfigure_keeps_bridge_handler(self, layer: object) -> None:
        bridge = LoggingBridgeHandler(layer)  # type: ignore[arg-type]
        logging.getLogger().addHandler(bridge)
        configure_logging()
        configure_logging(json_output=True)
        root_handlers = logging.getLogger().handlers
        assert bridge in root_handlers
        assert sum(isinstance(h.formatter, ProcessorFormatter) for h in root_handlers) == 1

    def test_noisy_loggers_are_quieted(self) -> None:
        configure_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_json_output_names_the_logger(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True)
        get_logger("nrtrace.reporter.blocking").warning("retrying")
        assert '"logger": "nrtrace.reporter.blocking"' in capsys.readouterr().err

    def test_api_key_is_redacted(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True)
        get_logger("nrtrace.tests").info("configured", api_key="eu01xxsecretkeyNRAL")
        err = capsys.readouterr().err
        assert "secretkey" not in err
        assert '"api_key": "...NRAL"' in err

    def test_bound_context_is_rendered(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True)
        get_logger("nrtrace.tests", reporter="blocking").info("closed")
        assert '"reporter": "blocking"' in capsys.readouterr().err

    def test_unknown_level_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            configure_logging(level="LOUD")
