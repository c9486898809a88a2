"""Tests for shared.log and shared.logging_config."""

import io
import json
import logging

import pytest

from shared.log import TRACE, create_logger
from shared.logging_config import NOISY_LOGGERS, configure_logging, resolve_level


@pytest.fixture
def restore_logging():
    """Put back root handlers and library levels touched by configure_logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    noisy = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, lvl in noisy.items():
        logging.getLogger(name).setLevel(lvl)


class TestCreateLogger:

    def test_component_logger_name(self, caplog):
        _, _, log_info, _, _ = create_logger("Engine")
        with caplog.at_level(logging.INFO, logger="ServiceSync.Engine"):
            log_info("run complete")
        assert caplog.records[0].name == "ServiceSync.Engine"
        assert caplog.records[0].getMessage() == "run complete"

    def test_default_name(self, caplog):
        _, _, _, log_warn, _ = create_logger()
        with caplog.at_level(logging.WARNING, logger="ServiceSync"):
            log_warn("careful")
        assert caplog.records[0].name == "ServiceSync"
        assert caplog.records[0].levelname == "WARNING"

    def test_trace_level(self, caplog):
        log_trace, *_ = create_logger("Engine")
        with caplog.at_level(TRACE, logger="ServiceSync.Engine"):
            log_trace("decision detail")
        assert caplog.records[0].levelname == "TRACE"


class TestConfigureLogging:

    @pytest.mark.parametrize("name, level", [
        ("trace", TRACE), ("TRACE", TRACE), ("debug", logging.DEBUG),
        ("warning", logging.WARNING), ("bogus", logging.INFO),
    ])
    def test_resolve_level(self, name, level):
        assert resolve_level(name) == level

    def test_json_output(self, restore_logging):
        stream = io.StringIO()
        configure_logging("info", stream=stream)

        logging.getLogger("ServiceSync.Engine").info("Run complete", extra={"created": 3})

        line = json.loads(stream.getvalue().splitlines()[-1])
        assert line["level"] == "INFO"
        assert line["name"] == "ServiceSync.Engine"
        assert line["msg"] == "Run complete"
        assert line["created"] == 3
        assert "ts" in line

    def test_level_applied(self, restore_logging):
        stream = io.StringIO()
        configure_logging("warning", stream=stream)
        logging.getLogger("ServiceSync.Engine").info("hidden")
        assert stream.getvalue() == ""

    def test_noisy_libraries_quieted(self, restore_logging):
        configure_logging("debug", stream=io.StringIO())
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_single_handler_on_reconfigure(self, restore_logging):
        configure_logging("info", stream=io.StringIO())
        configure_logging("info", stream=io.StringIO())
        assert len(logging.getLogger().handlers) == 1
