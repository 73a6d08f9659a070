"""
Logging for enrichment runs.

Loggers write one JSON object per line to stdout (python-json-logger) so a
run can be followed per statement and per transaction by filtering on the
``statement_id`` / ``transaction_id`` extras. Set LOG_FORMAT=text for a
readable console while developing, and LOG_LEVEL to change verbosity.
"""
import logging
import os
import sys
import time

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "ledger-enrich"

JSON_FIELDS = "%(timestamp)s %(level)s %(logger)s %(module)s %(function)s %(message)s"
TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(funcName)s] %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Adds service, level, logger and call-site fields to every entry."""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = log_record.get("timestamp") or self.formatTime(record, self.datefmt)
        log_record["level"] = (log_record.get("level") or record.levelname).upper()
        log_record["service"] = SERVICE_NAME
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName


def _resolve_level(level: str | None) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logger(
    name: str = SERVICE_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    (Re)configure a logger with a single stdout handler.

    Args:
        name: Logger name, usually a module's __name__
        level: Level name; LOG_LEVEL, then INFO, when omitted
        format_type: "json" or "text"; LOG_FORMAT, then json, when omitted

    Returns:
        The configured logger
    """
    log_level = _resolve_level(level)
    format_type = (format_type or os.getenv("LOG_FORMAT") or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if format_type == "json":
        handler.setFormatter(CustomJsonFormatter(fmt=JSON_FIELDS, datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler.setFormatter(logging.Formatter(fmt=TEXT_FORMAT, datefmt="%H:%M:%S"))

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()
    logger.addHandler(handler)
    # entries would otherwise be printed twice by a configured root logger
    logger.propagate = False
    return logger


def get_logger(name: str = SERVICE_NAME) -> logging.Logger:
    """Logger for ``name``, set up on first use."""
    logger = logging.getLogger(name)
    return logger if logger.handlers else setup_logger(name)


class log_operation:
    """
    Log the start, end and wall time of a block.

    The measured time is kept on ``duration`` for run summaries. Exceptions
    are logged and re-raised.

        with log_operation("Enrichment run", logger=logger, limit=10) as op:
            ...
        summary["duration_seconds"] = op.duration
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **context):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.context = {"operation": operation_name, **context}
        self.duration: float = 0.0
        self._started: float | None = None

    def __enter__(self):
        self._started = time.monotonic()
        self.logger.info(f"{self.operation_name} started", extra=self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.monotonic() - self._started
        fields = {**self.context, "duration_seconds": round(self.duration, 3)}

        if exc_type is None:
            self.logger.info(
                f"{self.operation_name} finished in {fields['duration_seconds']}s",
                extra={**fields, "status": "success"},
            )
        else:
            self.logger.error(
                f"{self.operation_name} failed after {fields['duration_seconds']}s: {exc_val}",
                extra={**fields, "status": "error", "error_type": exc_type.__name__},
                exc_info=(exc_type, exc_val, exc_tb),
            )
        return False
