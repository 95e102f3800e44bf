"""
Tests for structured JSON logging
"""

import io
import json
import logging

from roundvote.core.logging_config import (
    CustomJsonFormatter,
    LogContext,
    clear_correlation_id,
    correlation_id,
    set_correlation_id,
    setup_logging,
)


def _capture(logger_name):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(CustomJsonFormatter(environment="test"))
    logger = logging.getLogger(logger_name)
    logger.handlers = [handler]
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger, stream


class TestCustomJsonFormatter:
    def test_emits_json_with_context_fields(self):
        logger, stream = _capture("roundvote.tests.formatter")
        logger.info("Ballot vote cast", extra={"event": "ballot.vote", "round": 3})

        record = json.loads(stream.getvalue())
        assert record["message"] == "Ballot vote cast"
        assert record["event"] == "ballot.vote"
        assert record["round"] == 3
        assert record["environment"] == "test"
        assert record["service"] == "roundvote"
        assert record["level"] == "info"
        assert "timestamp" in record
        assert record["source"]["function"] == "test_emits_json_with_context_fields"

    def test_includes_correlation_id(self):
        logger, stream = _capture("roundvote.tests.correlation")
        clear_correlation_id()
        with LogContext("req-123"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert inside["correlation_id"] == "req-123"
        assert "correlation_id" not in outside


class TestCorrelationId:
    def test_set_and_clear(self):
        assert set_correlation_id("abc") == "abc"
        assert correlation_id.get() == "abc"
        clear_correlation_id()
        assert correlation_id.get() is None

    def test_generated_ids_are_unique(self):
        assert LogContext().correlation_id != LogContext().correlation_id
        assert len(LogContext().correlation_id) == 16


class TestSetupLogging:
    def test_console_only(self):
        logger = setup_logging(name="roundvote.tests.setup", level="DEBUG", enable_file=False)
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, CustomJsonFormatter)

    def test_rotating_file(self, tmp_path):
        log_file = tmp_path / "logs" / "ballot.json"
        logger = setup_logging(
            name="roundvote.tests.file",
            log_file=str(log_file),
            enable_console=False,
        )
        logger.info("written", extra={"event": "test.file"})
        for handler in logger.handlers:
            handler.flush()

        assert json.loads(log_file.read_text().splitlines()[0])["event"] == "test.file"
        for handler in logger.handlers:
            handler.close()
