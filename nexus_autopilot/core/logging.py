"""
EventNexus Autopilot - Structured Logging
JSON output for production, colored console output for operators.
"""

import sys
import logging
import json
from datetime import datetime
from typing import Optional
from contextvars import ContextVar

# Context variable for cycle tracking
_cycle_id: ContextVar[Optional[str]] = ContextVar('cycle_id', default=None)

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName'
}


def get_cycle_id() -> Optional[str]:
    return _cycle_id.get()


def set_cycle_id(cycle_id: Optional[str]):
    return _cycle_id.set(cycle_id)


def reset_cycle_id(token):
    _cycle_id.reset(token)


class StructuredFormatter(logging.Formatter):
    """
    JSON structured log formatter.
    """

    def __init__(self, include_extras: bool = True):
        super().__init__()
        self.include_extras = include_extras

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_data["location"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName
        }

        cycle_id = get_cycle_id()
        if cycle_id:
            log_data["cycle_id"] = cycle_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extras:
            extras = {
                k: v for k, v in record.__dict__.items()
                if k not in _RESERVED_ATTRS
            }
            if extras:
                log_data["extra"] = extras

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with colors.
    """

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, '')
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S')

        msg = f"{color}{timestamp} [{record.levelname:8}]{self.RESET} {record.getMessage()}"

        cycle_id = get_cycle_id()
        if cycle_id:
            msg = f"{msg} [cycle:{cycle_id}]"

        if record.exc_info:
            msg += f"\n{self.formatException(record.exc_info)}"

        return msg


class AutopilotLogger:
    """
    Structured logger wrapper; keyword arguments become record extras.
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **kwargs):
        self._logger.log(level, message, extra=kwargs)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs):
        self._logger.exception(message, extra=kwargs)

    # Convenience methods for common log patterns
    def decision(self, campaign_id: str, outcome: str, **kwargs):
        self.info("Campaign evaluated", campaign_id=campaign_id, outcome=outcome, **kwargs)

    def action_recorded(self, action_id: str, action_type: str, status: str, **kwargs):
        self.info("Autonomous action recorded", action_id=action_id,
                  action_type=action_type, status=status, **kwargs)


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    include_extras: bool = True
):
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSON format (for production)
        include_extras: Include extra fields in JSON output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if json_output:
        handler.setFormatter(StructuredFormatter(include_extras=include_extras))
    else:
        handler.setFormatter(ConsoleFormatter())

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> AutopilotLogger:
    """Get a structured logger instance."""
    return AutopilotLogger(name)
