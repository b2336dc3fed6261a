"""Structured logging for the underwriteiq service."""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

from underwriteiq.middleware import request_id_var

# Set by the processor so every line logged while a job runs carries its id.
job_id_var: ContextVar[str] = ContextVar("job_id", default="-")


class JSONFormatter(logging.Formatter):
    """Formats log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "request_id": request_id_var.get("-"),
        }
        job_id = job_id_var.get("-")
        if job_id != "-":
            log_entry["job_id"] = job_id
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[41m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%H:%M:%S")
        tag = request_id_var.get("-")
        job_id = job_id_var.get("-")
        if job_id != "-":
            tag = f"{tag} {job_id}"
        line = f"{color}{timestamp} [{record.levelname:8s}]{self.RESET} {record.name} [{tag}]: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logger(name: str = "underwriteiq") -> logging.Logger:
    """Set up and return the application logger.

    LOG_FORMAT=json switches to one JSON object per line (for log drains).
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    _logger = logging.getLogger(name)
    _logger.setLevel(getattr(logging, log_level, logging.INFO))

    if _logger.handlers:
        return _logger

    handler = logging.StreamHandler(sys.stdout)
    if os.getenv("LOG_FORMAT", "console").lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())
    _logger.addHandler(handler)

    return _logger


logger = setup_logger()
