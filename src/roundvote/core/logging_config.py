"""
roundvote - Structured Logging Configuration

Ballot modules log through ``logging.getLogger(__name__)`` with an ``extra``
payload naming the event (``{"event": "ballot.vote", ...}``). Hosts call
``setup_ballot_logging()`` once to render those records as JSON lines on the
console and, optionally, in a rotating file.

Usage:
    from roundvote.core.logging_config import LogContext, setup_ballot_logging

    setup_ballot_logging()
    with LogContext(request_id):
        ballot.vote(caller, 1)
"""

from __future__ import annotations

import logging
import logging.handlers
import secrets
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

# Correlation id of the request or job currently being handled
correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

DEFAULT_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with service context."""

    def __init__(
        self,
        fmt: str = DEFAULT_FORMAT,
        timestamp: bool = True,
        environment: Optional[str] = None,
        service_name: str = "roundvote",
    ):
        super().__init__(fmt=fmt)
        self.timestamp = timestamp
        self.environment = environment or "production"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        # Fields named in the format string arrive as None.
        if self.timestamp and not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name

        current_id = correlation_id.get()
        if current_id:
            log_record["correlation_id"] = current_id

        log_record["source"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


def setup_logging(
    name: str = "roundvote",
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "production",
    enable_console: bool = True,
    enable_file: bool = True,
    max_bytes: int = 50 * 1024 * 1024,
    backup_count: int = 10,
) -> logging.Logger:
    """
    Replace the handlers of logger ``name`` with JSON handlers.

    Args:
        name: Logger to configure; its first dotted component names the service
        log_file: Rotating JSON log file, used when ``enable_file`` is set
        level: Level name applied to the logger and its handlers
        environment: Value of the ``environment`` field
        enable_console: Write to stdout
        enable_file: Write to ``log_file``
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files to keep

    Returns:
        The configured logger
    """
    numeric_level = _level(level)
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)
    logger.handlers = []

    formatter = CustomJsonFormatter(environment=environment, service_name=name.split(".")[0])
    handlers: list[logging.Handler] = []

    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))

    if enable_file and log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                logging.handlers.RotatingFileHandler(
                    filename=log_file,
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            )
        except OSError as exc:
            logger.warning(
                "Could not create file handler",
                extra={"event": "logging.file_handler_failed", "log_file": log_file, "error": str(exc)},
            )

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str, log_file: Optional[str] = None, level: str = "INFO") -> logging.Logger:
    """Logger ``name``, configured with JSON handlers the first time it is requested."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    return setup_logging(name=name, log_file=log_file, level=level)


def setup_ballot_logging(config: Any = None) -> logging.Logger:
    """Configure the ``roundvote`` logger from ``ROUNDVOTE_LOG_*`` settings."""
    if config is None:
        from roundvote.core.config import Config as config
    return setup_logging(
        name="roundvote",
        log_file=getattr(config, "LOG_FILE", "") or None,
        level=getattr(config, "LOG_LEVEL", "INFO"),
        environment=getattr(config, "LOG_ENVIRONMENT", "production"),
    )


def new_correlation_id() -> str:
    return secrets.token_hex(8)


class LogContext:
    """
    Bind a correlation id to every record logged inside the block.

    Usage:
        with LogContext() as ctx:
            logger.info("Ballot vote cast")  # carries ctx.correlation_id
    """

    def __init__(self, custom_id: Optional[str] = None):
        self.correlation_id = custom_id or new_correlation_id()
        self._token: Optional[Token] = None

    def __enter__(self) -> "LogContext":
        self._token = correlation_id.set(self.correlation_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        correlation_id.reset(self._token)


def set_correlation_id(custom_id: Optional[str] = None) -> str:
    """Set the correlation id for the current context and return it."""
    value = custom_id or new_correlation_id()
    correlation_id.set(value)
    return value


def clear_correlation_id() -> None:
    correlation_id.set(None)
