"""Tests for logging setup."""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler

from ingest_api.config import Settings
from ingest_api.logging_config import JsonFormatter, setup_logging


class TestJsonFormatter:
    """Test JsonFormatter class."""

    def test_format_includes_extra_fields(self):
        record = logging.LogRecord(
            name="harbor_bridge.session",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Session %s reconnecting",
            args=("dj-1",),
            exc_info=None,
        )
        record.session_id = "dj-1"

        data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["logger"] == "harbor_bridge.session"
        assert data["message"] == "Session dj-1 reconnecting"
        assert data["session_id"] == "dj-1"
        assert "msg" not in data

    def test_format_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        data = json.loads(JsonFormatter().format(record))
        assert "ValueError: boom" in data["exception"]


class TestSetupLogging:
    """Test setup_logging function."""

    def test_console_only(self):
        logger = setup_logging(Settings(log_level="DEBUG"), logger_name="ingest-test-console")

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JsonFormatter)

    def test_json_console(self):
        logger = setup_logging(Settings(json_logs=True), logger_name="ingest-test-json")
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)

    def test_rotating_file(self, tmp_path):
        log_file = tmp_path / "logs" / "ingest.log"
        settings = Settings(log_file=str(log_file), log_file_backup_count=2)

        logger = setup_logging(settings, logger_name="ingest-test-file")
        logger.info("relay started")
        for handler in logger.handlers:
            handler.flush()

        file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].backupCount == 2

        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "relay started"

        for handler in file_handlers:
            handler.close()
