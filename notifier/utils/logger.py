"""
Logging Utility for the dispatch core.

Provides structured JSON logging with per-call context fields.
"""

import json
import logging
import sys
from typing import Any, Dict

from notifier.utils.time import utcnow


def _json_default(value: Any) -> str:
    return str(value)


class StructuredLogger:
    """Structured logger that renders each record as a JSON object."""

    def __init__(self, name: str, level: int = logging.NOTSET):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            level: Logging level (NOTSET defers to the root configuration)
        """
        self.logger = logging.getLogger(name)
        if level != logging.NOTSET:
            self.logger.setLevel(level)

    def _build(self, level: int, message: str, **kwargs) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": utcnow().isoformat(),
            "level": logging.getLevelName(level),
            "message": message,
            "service": self.logger.name,
        }
        log_data.update(kwargs)
        return json.dumps(log_data, default=_json_default)

    def _log_structured(self, level: int, message: str, **kwargs):
        """
        Log a structured message.

        Args:
            level: Logging level
            message: Log message
            **kwargs: Additional structured data
        """
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self._build(level, message, **kwargs))

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._log_structured(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._log_structured(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._log_structured(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message."""
        self._log_structured(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log exception with traceback."""
        if self.logger.isEnabledFor(logging.ERROR):
            self.logger.exception(self._build(logging.ERROR, message, exception=True, **kwargs))


def configure_logging(level: str = "INFO"):
    """Set up the root console handler for the service process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger for the given module or service.

    Args:
        name: Logger name, usually ``__name__``

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name)
