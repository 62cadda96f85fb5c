"""
Tests for logging setup.
"""

import logging

from logging_config import ColoredFormatter, get_logger, setup_logging


class TestSetupLogging:
    def test_named_logger_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "signals.log"
        logger = setup_logging("signals.test", level="DEBUG", log_file=str(log_file), console=False)

        logger.debug("bar closed")
        for handler in logger.handlers:
            handler.flush()

        assert logger.level == logging.DEBUG
        assert not logger.propagate
        assert "bar closed" in log_file.read_text()

    def test_env_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        logger = setup_logging("signals.env", console=True)
        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, ColoredFormatter)

    def test_json_format(self, monkeypatch):
        monkeypatch.setenv("LOG_JSON", "true")
        logger = setup_logging("signals.json")
        assert not isinstance(logger.handlers[0].formatter, ColoredFormatter)

    def test_colour_does_not_leak_into_record(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
        ColoredFormatter("%(levelname)s %(message)s").format(record)
        assert record.levelname == "INFO"

    def test_get_logger(self):
        assert get_logger("core.engine").name == "core.engine"
