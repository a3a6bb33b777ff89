# Deffatest Slack Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Structured logging configuration for the Deffatest Slack bot.

Provides JSON-formatted logging with context and redaction of secrets.
"""

import json
import logging
import re
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class SensitiveDataFilter(logging.Filter):
    """
    Filter to redact sensitive data from log records.

    Bot tokens, Deffatest API keys, webhook signatures and stored
    encrypted secrets must never appear in logs.
    """

    PATTERNS = [
        # Slack tokens
        (re.compile(r'(xoxb-[a-zA-Z0-9-]+)'), 'REDACTED_BOT_TOKEN'),
        (re.compile(r'(xoxp-[a-zA-Z0-9-]+)'), 'REDACTED_USER_TOKEN'),
        (re.compile(r'(xoxa-[a-zA-Z0-9-]+)'), 'REDACTED_ACCESS_TOKEN'),
        (re.compile(r'(xoxr-[a-zA-Z0-9-]+)'), 'REDACTED_REFRESH_TOKEN'),

        # Bearer tokens
        (re.compile(r'(Bearer\s+[a-zA-Z0-9._-]+)'), 'Bearer REDACTED_TOKEN'),

        # Stored secrets (iv:tag:ciphertext)
        (re.compile(r'\b[0-9a-fA-F]{32}:[0-9a-fA-F]{32}:[0-9a-fA-F]+\b'), 'REDACTED_ENCRYPTED_SECRET'),

        # Webhook signature headers
        (re.compile(r'(x-deffatest-signature["\']?\s*[:=]\s*["\']?)[0-9a-fA-F]+', re.IGNORECASE), r'\1REDACTED'),

        # JSON field patterns
        (re.compile(r'("password"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
        (re.compile(r'("api_key"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
        (re.compile(r'("secret"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
        (re.compile(r'("access_token"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
        (re.compile(r'("bot_token"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
        (re.compile(r'("client_secret"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
        (re.compile(r'("signing_secret"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
        (re.compile(r'("webhook_secret"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
        (re.compile(r'("encryption_key"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1REDACTED\2'),
    ]

    SENSITIVE_KEYS = {
        'password', 'token', 'secret', 'api_key', 'apikey',
        'access_token', 'bot_token', 'authorization', 'signature',
        'client_secret', 'signing_secret', 'webhook_secret', 'encryption_key',
        'bearer', 'credentials', 'credential', 'auth'
    }

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from log message, args and extra fields."""
        if isinstance(record.msg, str):
            record.msg = self._redact_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = self._redact_dict(record.args)
            elif isinstance(record.args, (list, tuple)):
                record.args = tuple(
                    self._redact_value(arg) for arg in record.args
                )

        # Fields passed through extra={} live on the record itself
        for key in list(record.__dict__.keys()):
            if key in JSONFormatter.RESERVED_ATTRS or key.startswith('_'):
                continue
            value = record.__dict__[key]
            if key.lower() in self.SENSITIVE_KEYS:
                record.__dict__[key] = 'REDACTED'
            elif isinstance(value, dict):
                record.__dict__[key] = self._redact_dict(value)
            elif isinstance(value, str):
                record.__dict__[key] = self._redact_value(value)

        return True

    def _redact_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively redact sensitive keys in dictionary."""
        result = {}
        for key, value in data.items():
            if str(key).lower() in self.SENSITIVE_KEYS:
                result[key] = 'REDACTED'
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_dict(item) if isinstance(item, dict) else self._redact_value(item)
                    for item in value
                ]
            elif isinstance(value, str):
                result[key] = self._redact_value(value)
            else:
                result[key] = value

        return result

    def _redact_value(self, value: Any) -> Any:
        """Redact sensitive patterns from string values."""
        if not isinstance(value, str):
            return value

        for pattern, replacement in self.PATTERNS:
            value = pattern.sub(replacement, value)

        return value


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    # Reserved LogRecord attributes that should not be included as extra fields
    RESERVED_ATTRS = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
        'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
        'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
        'exc_text', 'stack_info', 'getMessage', 'message', 'asctime', 'taskName'
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
            log_data['exception_type'] = record.exc_info[0].__name__ if record.exc_info[0] else None

        # Add all extra fields passed via extra={}
        for key, value in record.__dict__.items():
            if key not in self.RESERVED_ATTRS and not key.startswith('_'):
                if key not in log_data:
                    log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format type ('json' or 'text')
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper()))

    if log_format.lower() == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler.setFormatter(formatter)
    console_handler.addFilter(SensitiveDataFilter())
    root_logger.addHandler(console_handler)

    # Third-party library log levels
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


# Fields added by LogContext, private to the current thread or asyncio task
_context_fields: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    'deffatest_log_context', default=None
)


def _install_context_factory() -> None:
    """Wrap the log record factory once so records pick up LogContext fields."""
    base_factory = logging.getLogRecordFactory()
    if getattr(base_factory, 'adds_log_context', False):
        return

    def record_factory(*args, **kwargs):
        record = base_factory(*args, **kwargs)
        fields = _context_fields.get()
        if fields:
            for key, value in fields.items():
                setattr(record, key, value)
        return record

    record_factory.adds_log_context = True
    logging.setLogRecordFactory(record_factory)


class LogContext:
    """
    Context manager for adding structured context to log records.

    Context is held in a ContextVar, so concurrent asyncio tasks each see
    only their own fields even when the block spans an ``await``.

    Usage:
        with LogContext(team_id="T456", test_id="run-1"):
            logger.info("Dispatching webhook")
    """

    def __init__(self, **context):
        self.context = context
        self._token: Optional[Token] = None

    def __enter__(self):
        _install_context_factory()
        current = _context_fields.get() or {}
        self._token = _context_fields.set({**current, **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _context_fields.reset(self._token)
            self._token = None
