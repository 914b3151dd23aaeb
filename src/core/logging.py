"""Structured logging with JSON support and sensitive data redaction."""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from .config import get_settings

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging() -> None:
    """Configure structured logging with JSON support for server environments."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.json_logs:
        formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        )
        renderer = structlog.stdlib.ProcessorFormatter.wrap_for_formatter
    else:
        formatter = logging.Formatter(CONSOLE_FORMAT)
        renderer = structlog.dev.ConsoleRenderer()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    # File handler for persistent logs
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            RedactSensitiveData(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class RedactSensitiveData:
    """Processor to redact sensitive data from logs."""

    SENSITIVE_KEYS = {
        "password",
        "secret",
        "token",
        "cvv",
        "card",
        "expiredate",
        "cookie",
        "authorization",
    }

    # Short names matched exactly so keys like "typing" survive
    SENSITIVE_EXACT_KEYS = {"otp", "pin"}

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Redact sensitive fields in log events."""
        return self._redact_dict(event_dict)

    def _is_sensitive(self, key: Any) -> bool:
        name = str(key).lower()
        if name in self.SENSITIVE_EXACT_KEYS:
            return True
        return any(sensitive in name for sensitive in self.SENSITIVE_KEYS)

    def _redact_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively redact sensitive keys in a dictionary."""
        redacted = {}
        for key, value in data.items():
            if self._is_sensitive(key):
                redacted[key] = "***REDACTED***"
            elif isinstance(value, dict):
                redacted[key] = self._redact_dict(value)
            elif isinstance(value, list):
                redacted[key] = [
                    self._redact_dict(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                redacted[key] = value
        return redacted


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def request_logger(name: str, session_id: str, run_key: Optional[str] = None) -> structlog.BoundLogger:
    """Logger carrying the request-scoped fields every stage logs with."""
    log = get_logger(name).bind(session_id=session_id)
    if run_key:
        log = log.bind(run_key=run_key)
    return log
